import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from marketplace.exceptions import MarketplaceError
from marketplace.services import PurchaseCoordinator
from marketplace.views.base import MarketplaceAPIView, error_response

logger = logging.getLogger(__name__)


class PurchaseView(MarketplaceAPIView):
    """
    POST /purchase/<item_id> — Buy an item on sale.

    The whole purchase either commits or leaves item and balances untouched.
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, item_id, *args, **kwargs):
        try:
            receipt = PurchaseCoordinator(self.get_store()).purchase(
                buyer_id=request.user.user_id,
                item_id=item_id,
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response(
            {"id": receipt.item_id, "price": receipt.price, "balance": receipt.buyer_balance},
            status=status.HTTP_200_OK,
        )
