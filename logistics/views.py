"""
Logistics App Views - Orders API
"""

from rest_framework import viewsets, status, permissions
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import AlreadyTaken, CourierBlocked
from core.permissions import IsCourier, IsOperator, get_request_courier
from .models import ActorType, Order, OrderStatus
from .serializers import (
    OrderSerializer, PublicOrderSerializer, OrderStatusHistorySerializer,
    OrderCreateSerializer, PublicOrderCreateSerializer,
    QuoteRequestSerializer, QuoteResponseSerializer,
    CancelSerializer, ClaimNextSerializer,
)
from .services import claims, lifecycle
from .services.distance import DistanceEstimator
from .services.pricing import PricingCalculator, is_night_time
from .services.stats import order_statistics

OPERATOR_ACTIONS = {'create', 'publish', 'cancel', 'stats'}
COURIER_ACTIONS = {'claim', 'claim_next', 'pickup', 'deliver'}


def claim_response(result: claims.ClaimResult) -> Response:
    """Map a ClaimResult onto an HTTP response."""
    body = {
        'outcome': result.outcome.value,
        'order': OrderSerializer(result.order).data if result.order is not None else None,
    }
    if result.outcome == claims.ClaimOutcome.ALREADY_TAKEN:
        error = AlreadyTaken()
    elif result.outcome == claims.ClaimOutcome.COURIER_BLOCKED:
        error = CourierBlocked()
    else:
        return Response(body)
    body.update({'error': error.message, 'code': error.code})
    return Response(body, status=error.status_code)


class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Orders for operators and couriers.

    Operators see everything; couriers see the published pool plus their
    own orders. All status changes go through the lifecycle services.
    """

    queryset = Order.objects.select_related('courier')
    serializer_class = OrderSerializer
    permission_classes = [permissions.IsAuthenticated]
    lookup_value_regex = '[0-9a-fA-F-]{36}'

    def get_permissions(self):
        if self.action in OPERATOR_ACTIONS:
            return [IsOperator()]
        if self.action in COURIER_ACTIONS:
            return [IsCourier()]
        return super().get_permissions()

    def get_queryset(self):
        qs = super().get_queryset()
        user = self.request.user

        if not user.is_staff:
            courier = get_request_courier(self.request)
            if courier is None:
                return qs.none()
            qs = qs.filter(status=OrderStatus.PUBLISHED) | qs.filter(courier=courier)

        status_filter = self.request.query_params.get('status')
        if status_filter:
            qs = qs.filter(status=status_filter)
        return qs

    def create(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = lifecycle.create_order(created_by=request.user, **serializer.validated_data)
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def publish(self, request, pk=None):
        order = lifecycle.publish(pk, operator_id=request.user.pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = lifecycle.cancel(
            pk,
            actor_type=ActorType.OPERATOR,
            actor_id=request.user.pk,
            reason=serializer.validated_data['reason'],
        )
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['get'])
    def history(self, request, pk=None):
        order = self.get_object()
        entries = order.history.all()
        return Response(OrderStatusHistorySerializer(entries, many=True).data)

    @action(detail=True, methods=['post'])
    def claim(self, request, pk=None):
        courier = get_request_courier(request)
        return claim_response(claims.claim(pk, courier.pk))

    @action(detail=False, methods=['post'], url_path='claim-next')
    def claim_next(self, request):
        serializer = ClaimNextSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        courier = get_request_courier(request)
        result = claims.claim_next_available(
            courier.pk,
            vehicle_class=serializer.validated_data.get('vehicle_class'),
        )
        return claim_response(result)

    @action(detail=True, methods=['post'])
    def pickup(self, request, pk=None):
        courier = get_request_courier(request)
        order = lifecycle.pickup(pk, courier.pk)
        return Response(OrderSerializer(order).data)

    @action(detail=True, methods=['post'])
    def deliver(self, request, pk=None):
        courier = get_request_courier(request)
        order = lifecycle.deliver(pk, courier.pk)
        return Response({
            'order': OrderSerializer(order).data,
            'earned': str(order.courier_payout),
        })

    @action(detail=False, methods=['get'])
    def stats(self, request):
        try:
            days = int(request.query_params.get('days', 30))
        except ValueError:
            return Response(
                {'error': 'days must be an integer', 'code': 'invalid_parameter'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return Response({'statistics': order_statistics(days)})


class PublicOrderTrackingView(APIView):
    """
    Public order lookup by order number.

    GET /api/public/orders/{order_number}/
    """

    permission_classes = [permissions.AllowAny]

    def get(self, request, order_number):
        order = lifecycle.get_order_by_number(order_number)
        return Response(PublicOrderSerializer(order).data)


class PublicOrderCreateAPIView(APIView):
    """
    Public order form.

    POST /api/public/orders/

    The order is priced from the distance service and stored as `new`;
    an operator publishes it to couriers.
    """

    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = PublicOrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = lifecycle.create_order(actor_type=ActorType.SYSTEM, **serializer.validated_data)
        return Response(PublicOrderSerializer(order).data, status=status.HTTP_201_CREATED)


class PublicQuoteAPIView(APIView):
    """
    Price estimation without creating anything.

    POST /api/public/quote/
    """

    permission_classes = [permissions.AllowAny]

    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        distance_km = data.get('distance_km')
        if distance_km is None:
            distance_km = DistanceEstimator().estimate_km(data['pickup_address'], data['delivery_address'])

        breakdown = PricingCalculator.from_settings().price(
            distance_km, data['vehicle_class'], is_night_time()
        )
        return Response(QuoteResponseSerializer(breakdown).data)
