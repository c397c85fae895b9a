# projects/serializers.py

from rest_framework import serializers
from .models import Project


class ProjectSerializer(serializers.ModelSerializer):
    task_count = serializers.SerializerMethodField()
    completed_task_count = serializers.SerializerMethodField()

    class Meta:
        model = Project
        fields = (
            'id', 'name', 'description', 'color', 'is_archived',
            'task_count', 'completed_task_count', 'created_at', 'updated_at'
        )
        read_only_fields = ('id', 'created_at', 'updated_at')

    def get_task_count(self, obj):
        return obj.tasks.exclude(status='deleted').count()

    def get_completed_task_count(self, obj):
        return obj.tasks.filter(status='completed').count()

    def create(self, validated_data):
        # owner always comes from the request, never from the payload
        validated_data['user'] = self.context['request'].user
        return super().create(validated_data)
