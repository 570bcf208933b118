# Generated migration for recommendations app

import django.core.validators
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import recommendations.models
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('user', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='RecommendationTracking',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('external_place_id', models.CharField(help_text='Place ID from the external provider', max_length=255)),
                ('place_name', models.CharField(max_length=255)),
                ('category', models.CharField(max_length=100)),
                ('recommendation_data', models.JSONField(blank=True, default=dict, help_text='Snapshot of the recommendation used to re-render it without re-fetching')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('viewed', 'Viewed'), ('accepted', 'Accepted'), ('declined', 'Declined'), ('not_interested', 'Not Interested'), ('expired', 'Expired')], default='pending', max_length=30)),
                ('confidence_score', models.FloatField(help_text='Score from 0.0 to 1.0', validators=[django.core.validators.MinValueValidator(0.0), django.core.validators.MaxValueValidator(1.0)])),
                ('last_shown_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('refresh_count', models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ('block_reason', models.TextField(blank=True, null=True)),
                ('viewed_at', models.DateTimeField(blank=True, null=True)),
                ('responded_at', models.DateTimeField(blank=True, null=True)),
                ('decline_reason', models.CharField(blank=True, max_length=100, null=True)),
                ('created_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('updated_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('expires_at', models.DateTimeField(default=recommendations.models.default_expires_at, help_text='Only meaningful while status is pending')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='recommendation_tracking', to='user.userprofile')),
            ],
            options={
                'db_table': 'recommendations_tracking',
                'indexes': [
                    models.Index(fields=['user', 'status', 'last_shown_at'], name='tracking_user_status_idx'),
                    models.Index(fields=['status', 'expires_at'], name='tracking_expiry_idx'),
                ],
                'constraints': [
                    models.CheckConstraint(condition=models.Q(('confidence_score__gte', 0.0), ('confidence_score__lte', 1.0)), name='tracking_confidence_score_range'),
                    models.CheckConstraint(condition=models.Q(('refresh_count__gte', 0)), name='tracking_refresh_count_non_negative'),
                ],
                'unique_together': {('user', 'external_place_id')},
            },
        ),
        migrations.CreateModel(
            name='BlockedActivity',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('external_place_id', models.CharField(max_length=255)),
                ('place_name', models.CharField(blank=True, default='', max_length=255)),
                ('reason', models.TextField(blank=True, default='')),
                ('blocked_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='blocked_activities', to='user.userprofile')),
            ],
            options={
                'db_table': 'recommendations_blocked_activity',
                'unique_together': {('user', 'external_place_id')},
            },
        ),
        migrations.CreateModel(
            name='RefreshHistory',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('tier', models.CharField(max_length=20)),
                ('recommendations_count', models.IntegerField(default=0, validators=[django.core.validators.MinValueValidator(0)])),
                ('data_source', models.CharField(help_text='Name of the candidate source used', max_length=50)),
                ('geohash', models.CharField(blank=True, default='', help_text='Geohash of the refresh location', max_length=12)),
                ('refreshed_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='refresh_history', to='user.userprofile')),
            ],
            options={
                'db_table': 'recommendations_refresh_history',
                'indexes': [models.Index(fields=['user', '-refreshed_at'], name='refresh_history_user_idx')],
            },
        ),
    ]
