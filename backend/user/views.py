from rest_framework.generics import get_object_or_404
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import UserProfile
from .serializers import UserProfileSerializer


class MeView(APIView):
    #permission_classes = [IsAuthenticated]

    def get(self, request):
        profile = get_object_or_404(UserProfile, user_id=request.user.pk)
        serializer = UserProfileSerializer(profile)
        return Response(serializer.data)


class ProfileView(APIView):
    #permission_classes = [IsAuthenticated]

    def get(self, request, id):
        profile = get_object_or_404(UserProfile, id=id)
        serializer = UserProfileSerializer(profile)
        return Response(serializer.data)
