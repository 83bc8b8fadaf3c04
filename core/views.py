"""
Core App Views - Courier Registry API
"""

from django.contrib.auth import get_user_model
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response

from .models import Courier
from .permissions import IsOperator
from .serializers import CourierSerializer, CourierCreateSerializer, CourierBlockSerializer
from . import services


class CourierViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Courier management for operators.

    Balances are read-only here: they only move through the ledger.
    """

    queryset = Courier.objects.all()
    serializer_class = CourierSerializer
    permission_classes = [IsOperator]

    def get_queryset(self):
        qs = super().get_queryset()
        blocked = self.request.query_params.get('blocked')
        if blocked is not None:
            qs = qs.filter(is_blocked=blocked.lower() in ('1', 'true', 'yes'))
        return qs

    def create(self, request):
        serializer = CourierCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        user = None
        if data.get('user_id'):
            user = get_user_model().objects.filter(pk=data['user_id']).first()

        courier = services.register_courier(
            full_name=data['full_name'],
            phone=data['phone'],
            vehicle_class=data['vehicle_class'],
            user=user,
        )
        return Response(CourierSerializer(courier).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def block(self, request, pk=None):
        serializer = CourierBlockSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        courier = services.block_courier(pk, reason=serializer.validated_data.get('reason', ''))
        return Response(CourierSerializer(courier).data)

    @action(detail=True, methods=['post'])
    def unblock(self, request, pk=None):
        courier = services.unblock_courier(pk)
        return Response(CourierSerializer(courier).data)
