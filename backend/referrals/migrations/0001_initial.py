# Generated migration for referrals app

from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('user', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Referral',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('referral_code', models.CharField(max_length=10)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('completed', 'Completed'), ('expired', 'Expired'), ('invalid', 'Invalid')], default='pending', max_length=20)),
                ('source', models.CharField(choices=[('sms', 'SMS'), ('whatsapp', 'WhatsApp'), ('instagram', 'Instagram'), ('facebook', 'Facebook'), ('link', 'Link'), ('other', 'Other')], default='link', max_length=20)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('referred', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='referrals_received', to='user.userprofile')),
                ('referrer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='referrals_made', to='user.userprofile')),
            ],
            options={
                'db_table': 'referrals',
                'indexes': [
                    models.Index(fields=['referrer', 'status'], name='referral_referrer_status_idx'),
                    models.Index(fields=['referral_code'], name='referral_code_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('referrer', 'referred'), name='unique_referral_pair'),
                    models.UniqueConstraint(fields=('referred',), name='unique_referred_user'),
                    models.CheckConstraint(condition=models.Q(('referrer', models.F('referred')), _negated=True), name='no_self_referral'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReferralReward',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('reward_type', models.CharField(choices=[('inviter_bonus', 'Inviter Bonus'), ('invitee_welcome', 'Invitee Welcome'), ('milestone_3', 'Milestone 3'), ('milestone_10', 'Milestone 10'), ('milestone_25', 'Milestone 25'), ('milestone_100', 'Milestone 100')], max_length=30)),
                ('description', models.CharField(blank=True, max_length=255)),
                ('plus_days', models.PositiveIntegerField(default=0)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('granted', 'Granted'), ('revoked', 'Revoked'), ('expired', 'Expired')], default='pending', max_length=20)),
                ('granted_at', models.DateTimeField(blank=True, null=True)),
                ('expires_at', models.DateTimeField(blank=True, null=True)),
                ('applied_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('referral', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='rewards', to='referrals.referral')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='referral_rewards', to='user.userprofile')),
            ],
            options={
                'db_table': 'referral_rewards',
                'indexes': [
                    models.Index(fields=['user', 'status'], name='reward_user_status_idx'),
                ],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'referral', 'reward_type'), name='unique_reward_per_referral'),
                    models.UniqueConstraint(condition=models.Q(('reward_type__in', ('milestone_3', 'milestone_10', 'milestone_25', 'milestone_100'))), fields=('user', 'reward_type'), name='unique_milestone_reward'),
                ],
            },
        ),
    ]
