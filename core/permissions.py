# core/permissions.py

from rest_framework import permissions


class IsOwner(permissions.BasePermission):
    """
    Object-level permission: only the worker who owns a job or booking may
    read or change it. Assumes the model instance has an `owner` attribute.
    """
    def has_object_permission(self, request, view, obj):
        return obj.owner_id == request.user.id
