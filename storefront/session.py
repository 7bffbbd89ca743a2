# storefront/session.py
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import aio_pika

from storefront import config
from storefront.auth_utils import decode_token
from storefront.errors import AuthError, NetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    user_id: str
    email: str
    access_token: str

    @classmethod
    def from_token(cls, token: str) -> "Session":
        payload = decode_token(token)
        return cls(user_id=str(payload["id"]), email=payload.get("sub", ""), access_token=token)


Requester = Callable[[dict], Awaitable[dict]]


async def send_request_and_wait_for_response(message: dict, timeout: float = None) -> dict:
    """Send a request to the identity provider over RabbitMQ and wait for the reply."""
    timeout = config.IDENTITY_TIMEOUT if timeout is None else timeout
    try:
        connection = await aio_pika.connect_robust(config.RABBITMQ_URL)
    except Exception as e:
        logger.exception("RabbitMQ is not ready")
        raise NetworkError("Identity service is not available, please try again") from e

    async with connection:
        channel = await connection.channel()
        # Приватная очередь для ответа
        callback_queue = await channel.declare_queue("", exclusive=True, auto_delete=True)
        correlation_id = str(uuid.uuid4())
        future = asyncio.get_running_loop().create_future()

        async def on_response(incoming: aio_pika.IncomingMessage):
            async with incoming.process():
                if incoming.correlation_id == correlation_id and not future.done():
                    future.set_result(json.loads(incoming.body.decode()))

        await callback_queue.consume(on_response)
        await channel.default_exchange.publish(
            aio_pika.Message(
                body=json.dumps(message).encode(),
                reply_to=callback_queue.name,
                correlation_id=correlation_id,
            ),
            routing_key=config.IDENTITY_QUEUE,
        )
        logger.debug("Waiting for identity response, correlation_id=%s", correlation_id)
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise NetworkError("Request timed out. Please try again later.")


class SessionStore:
    """Текущая сессия пользователя.

    Создаётся при старте приложения, при выходе вызывает зарегистрированные
    обработчики (например, сброс корзины).
    """

    def __init__(self, requester: Requester = send_request_and_wait_for_response, session: Session = None):
        self._requester = requester
        self._session = session
        self._teardown: List[Callable[[Session], None]] = []

    def on_sign_out(self, callback: Callable[[Session], None]):
        self._teardown.append(callback)

    async def sign_in(self, email: str, password: str) -> Session:
        if not email or not password:
            raise AuthError("Email and password are required")
        response = await self._requester({"event": "login_request", "email": email, "password": password})
        if response.get("status") != "success" or not response.get("token"):
            logger.warning("Sign-in rejected for %s", email)
            raise AuthError(response.get("message") or "Invalid username or password")
        self._session = Session.from_token(response["token"])
        logger.info("Signed in user_id=%s", self._session.user_id)
        return self._session

    def current(self) -> Optional[Session]:
        """Сессия или None, если её нет либо токен истёк."""
        if self._session is None:
            return None
        try:
            decode_token(self._session.access_token)
        except AuthError:
            logger.debug("Session for user_id=%s expired", self._session.user_id)
            self._session = None
        return self._session

    def require(self) -> Session:
        session = self.current()
        if session is None:
            raise AuthError()
        return session

    def sign_out(self):
        session, self._session = self._session, None
        if session is None:
            return
        for callback in self._teardown:
            callback(session)
        logger.info("Signed out user_id=%s", session.user_id)
