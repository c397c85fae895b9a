# tasks/serializers.py

from rest_framework import serializers
from .models import Task


class TaskSerializer(serializers.ModelSerializer):
    subtask_count = serializers.SerializerMethodField()

    class Meta:
        model = Task
        fields = [
            'id', 'title', 'description', 'project', 'parent_task', 'status',
            'priority', 'due_date', 'estimated_minutes', 'actual_minutes',
            'completed_at', 'sort_order', 'metadata', 'subtask_count',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'completed_at', 'subtask_count', 'created_at', 'updated_at']

    def get_subtask_count(self, obj):
        return obj.subtasks.exclude(status=Task.Status.DELETED).count()

    def _request_user(self):
        return self.context['request'].user

    def validate_project(self, value):
        # foreign projects are reported exactly like missing ones
        if value is not None and value.user_id != self._request_user().id:
            raise serializers.ValidationError("Project not found.")
        return value

    def validate_parent_task(self, value):
        if value is None:
            return value
        if value.user_id != self._request_user().id or value.status == Task.Status.DELETED:
            raise serializers.ValidationError("Parent task not found.")
        if self.instance is not None and value.pk == self.instance.pk:
            raise serializers.ValidationError("A task cannot be its own parent.")
        return value

    def validate_metadata(self, value):
        if not isinstance(value, dict):
            raise serializers.ValidationError("metadata must be an object.")
        stall_events = value.get('stallEvents')
        if stall_events is not None:
            if not isinstance(stall_events, list):
                raise serializers.ValidationError("stallEvents must be a list.")
            for event in stall_events:
                if not isinstance(event, dict) or 'reason' not in event:
                    raise serializers.ValidationError("Each stall event needs a reason.")
                minutes = event.get('durationMinutes', 0)
                if not isinstance(minutes, (int, float)) or minutes < 0:
                    raise serializers.ValidationError("durationMinutes must be a non-negative number.")
        return value

    def create(self, validated_data):
        validated_data['user'] = self._request_user()
        if validated_data.get('status') == Task.Status.COMPLETED:
            task = Task(**validated_data)
            task.mark_completed()
            task.save()
            return task
        return super().create(validated_data)

    def update(self, instance, validated_data):
        new_status = validated_data.get('status')
        if new_status == Task.Status.COMPLETED and not instance.is_completed:
            instance.mark_completed()
        elif new_status and new_status != Task.Status.COMPLETED and instance.is_completed:
            instance.completed_at = None
        return super().update(instance, validated_data)


class TaskCompleteSerializer(serializers.Serializer):
    """Body of POST /tasks/<id>/complete/."""
    complete = serializers.BooleanField(default=True)
    actualMinutes = serializers.IntegerField(required=False, min_value=0)
    outcome = serializers.ChoiceField(
        choices=['abandoned', 'delegated', 'deferred'],
        required=False,
    )
