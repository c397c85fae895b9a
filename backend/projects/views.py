# projects/views.py

from rest_framework import generics, permissions
from .models import Project
from .serializers import ProjectSerializer


class ProjectListCreateView(generics.ListCreateAPIView):
    """
    GET: List the authenticated user's active projects.
    POST: Create a project.
    """
    serializer_class = ProjectSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        qs = Project.objects.filter(user=self.request.user)
        if self.request.query_params.get('includeArchived') != 'true':
            qs = qs.filter(is_archived=False)
        return qs

list_create_view = ProjectListCreateView.as_view()


class ProjectRetrieveUpdateDestroyView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET, PUT, PATCH, DELETE for one project.
    Other users' projects fall outside the queryset and answer 404.
    """
    serializer_class = ProjectSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        return Project.objects.filter(user=self.request.user)

retrieve_update_destroy_view = ProjectRetrieveUpdateDestroyView.as_view()
