import logging

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from marketplace.exceptions import MarketplaceError
from marketplace.serializers import BalanceSerializer, LoginSerializer, RegisterSerializer
from marketplace.services import AccountService, BalanceLedger
from marketplace.views.base import MarketplaceAPIView, error_response

logger = logging.getLogger(__name__)


class RegisterView(MarketplaceAPIView):
    """
    POST /register — Create a user.

    Request body: {"name": <string>, "password": <string>}
    """

    def post(self, request, *args, **kwargs):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            user = AccountService(self.get_store()).register(
                name=serializer.validated_data["name"],
                password=serializer.validated_data["password"],
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"id": user.pk, "name": user.name}, status=status.HTTP_200_OK)


class LoginView(MarketplaceAPIView):
    """
    POST /login — Exchange user id and password for a bearer token.

    Request body: {"user_id": <int>, "password": <string>}
    """

    def post(self, request, *args, **kwargs):
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = AccountService(self.get_store()).login(
                user_id=serializer.validated_data["user_id"],
                password=serializer.validated_data["password"],
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response(
            {"id": result.user.pk, "name": result.user.name, "token": result.token},
            status=status.HTTP_200_OK,
        )


class BalanceView(MarketplaceAPIView):
    """
    GET /balance — Balance of the caller.
    POST /balance — Recharge the caller's balance.

    Request body: {"balance": <positive integer>}
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        try:
            balance = BalanceLedger(self.get_store()).balance(request.user.user_id)
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"balance": balance}, status=status.HTTP_200_OK)

    def post(self, request, *args, **kwargs):
        serializer = BalanceSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            balance = BalanceLedger(self.get_store()).recharge(
                user_id=request.user.user_id,
                amount=serializer.validated_data["balance"],
            )
        except MarketplaceError as exc:
            return error_response(exc)

        return Response({"balance": balance}, status=status.HTTP_200_OK)
