"""
Finance App Views - Courier Ledger, Wallet & Payout Requests API
"""

from decimal import Decimal

from django.conf import settings
from django.db.models import Sum
from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response

from core.exceptions import IntegrityViolation
from core.permissions import IsCourier, IsOperator, get_request_courier
from core.services import get_courier
from .models import LedgerEntry, PayoutRequest, PayoutStatus
from .serializers import (
    LedgerEntrySerializer, AdjustmentSerializer,
    PayoutRequestSerializer, PayoutRequestCreateSerializer, PayoutDecisionSerializer,
    WalletSummarySerializer,
)
from . import services


class CourierLedgerViewSet(viewsets.ViewSet):
    """
    Ledger operations on one courier (operators only).

    GET  /api/couriers/{id}/ledger/
    POST /api/couriers/{id}/reconcile/
    POST /api/couriers/{id}/adjust/
    """

    permission_classes = [IsOperator]

    def ledger(self, request, courier_id=None):
        courier = get_courier(courier_id)
        entries = LedgerEntry.objects.filter(courier=courier).select_related('order')[:200]
        return Response({
            'courier_id': str(courier.pk),
            'balance': courier.balance,
            'entries': LedgerEntrySerializer(entries, many=True).data,
        })

    def reconcile(self, request, courier_id=None):
        try:
            report = services.reconcile(courier_id)
        except IntegrityViolation as e:
            return Response(
                {'error': e.message, 'code': e.code, 'report': e.context['report'].as_dict()},
                status=e.status_code
            )
        return Response({'report': report.as_dict()})

    def adjust(self, request, courier_id=None):
        serializer = AdjustmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        entry = services.adjust(
            courier_id,
            serializer.validated_data['amount'],
            note=serializer.validated_data['note'],
            actor=request.user,
        )
        return Response(LedgerEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


class WalletViewSet(viewsets.ViewSet):
    """
    A courier's own balance and ledger.
    """

    permission_classes = [IsCourier]

    @action(detail=False, methods=['get'])
    def balance(self, request):
        """Get current balance."""
        courier = get_request_courier(request)

        pending = PayoutRequest.objects.filter(
            courier=courier,
            status__in=[PayoutStatus.PENDING, PayoutStatus.APPROVED]
        ).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')

        data = {
            'balance': courier.balance,
            'total_earned': courier.total_earned,
            'total_deliveries': courier.total_deliveries,
            'pending_payouts': pending,
            'min_payout_amount': Decimal(str(settings.MIN_PAYOUT_AMOUNT)),
        }
        return Response(WalletSummarySerializer(data).data)

    @action(detail=False, methods=['get'])
    def history(self, request):
        """Get ledger history."""
        courier = get_request_courier(request)
        entries = LedgerEntry.objects.filter(courier=courier).select_related('order')[:50]
        return Response(LedgerEntrySerializer(entries, many=True).data)


class PayoutRequestViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Payout requests.

    Couriers create and list their own; operators list all and process them.
    """

    queryset = PayoutRequest.objects.select_related('courier')
    serializer_class = PayoutRequestSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_permissions(self):
        if self.action == 'create':
            return [IsCourier()]
        if self.action in ('approve', 'reject', 'complete'):
            return [IsOperator()]
        return super().get_permissions()

    def get_queryset(self):
        qs = super().get_queryset()
        if not self.request.user.is_staff:
            courier = get_request_courier(self.request)
            if courier is None:
                return qs.none()
            qs = qs.filter(courier=courier)

        status_filter = self.request.query_params.get('status')
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def create(self, request):
        serializer = PayoutRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        courier = get_request_courier(request)
        payout = services.request_payout(
            courier.pk,
            data['amount'],
            payment_method=data['payment_method'],
            account_info=data['account_info'],
        )
        return Response(PayoutRequestSerializer(payout).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def approve(self, request, pk=None):
        serializer = PayoutDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payout = services.approve_payout(pk, operator=request.user, notes=serializer.validated_data['notes'])
        return Response(PayoutRequestSerializer(payout).data)

    @action(detail=True, methods=['post'])
    def reject(self, request, pk=None):
        serializer = PayoutDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payout = services.reject_payout(pk, operator=request.user, reason=serializer.validated_data['notes'])
        return Response(PayoutRequestSerializer(payout).data)

    @action(detail=True, methods=['post'])
    def complete(self, request, pk=None):
        payout = services.complete_payout(pk, operator=request.user)
        return Response(PayoutRequestSerializer(payout).data)
