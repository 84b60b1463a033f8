"""Session controller: the cashier's cart-to-sale state machine.

    idle -> listening -> populated -> awaiting_payment -> paid -> idle

A session starts when the operator enters a cart id and the router subscribes
to the cart's topic. The first cart message that resolves against the catalog
populates it. Checkout either waits for cash or opens a hosted payment page
whose navigation events are classified until a verdict is reached. Entering
``paid`` records the sale and tells the cart device it has been paid for.
"""

import asyncio
import functools
from decimal import Decimal
from typing import Optional, Union

from .cart_filter import CartMessageFilter, RawPayload
from .classifier import CheckoutResultClassifier
from .errors import (
    CheckoutGatewayUnavailable,
    EmptyCart,
    InsufficientCash,
    InvalidCartId,
    InvalidSessionState,
    ItemNotInCart,
    MalformedPayload,
    NoValidItems,
    PersistenceFailure,
    TransportUnavailable,
)
from .gateway import CheckoutGateway
from .ledger import SalesLedger
from .logger import logger
from .router import TopicRouter
from .schemas import (
    CartSession,
    CheckoutAttempt,
    CheckoutOutcome,
    PaymentMethod,
    PaymentStatusEvent,
    SaleRecord,
    SessionState,
)


class SessionController:
    """Owns the current cart session and drives it through its states.

    Attributes:
        session: The current session; an idle one when no cart is attached.
        checkout_attempt: The latest checkout attempt of the session, if any.
        sale: The sale recorded when the session was paid.
        sale_persisted: Whether ``sale`` reached the ledger.
        status_published: Whether the status event reached the bus.
        notice: Last message for the operator (rejected cart, failed payment, ...).
    """

    def __init__(
        self,
        router: TopicRouter,
        cart_filter: CartMessageFilter,
        ledger: SalesLedger,
        gateway: CheckoutGateway,
        classifier: Optional[CheckoutResultClassifier] = None,
        cashier_name: str = "Admin",
        listen_timeout: Optional[float] = None,
    ):
        self.router = router
        self.cart_filter = cart_filter
        self.ledger = ledger
        self.gateway = gateway
        self.classifier = classifier or CheckoutResultClassifier()
        self.cashier_name = cashier_name
        self.listen_timeout = listen_timeout

        self.session = CartSession()
        self.checkout_attempt: Optional[CheckoutAttempt] = None
        self.sale: Optional[SaleRecord] = None
        self.sale_persisted = False
        self.status_published = False
        self.notice: Optional[str] = None
        self._listen_timer: Optional[asyncio.Task] = None
        # Ledger write of the current sale, shared by everyone waiting on it
        self._pending_record: Optional[asyncio.Task] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    def _require(self, *states: SessionState) -> None:
        if self.session.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidSessionState(f"Session is {self.session.state.value}, expected {allowed}")

    def _cancel_listen_timer(self) -> None:
        if self._listen_timer is not None and not self._listen_timer.done():
            self._listen_timer.cancel()
        self._listen_timer = None

    def _discard_session(self) -> None:
        """Drop the current session and return to an idle one."""
        self._cancel_listen_timer()
        self.router.end_session()
        # Marks the old session closed for any cart message still being resolved
        self.session.state = SessionState.IDLE
        self.session = CartSession()
        self.checkout_attempt = None
        self.sale = None
        self.sale_persisted = False
        self.status_published = False
        self._pending_record = None

    async def start_session(self, cart_id: str) -> CartSession:
        """Attach the terminal to a cart and wait for its contents.

        Any current session is discarded; a paid one is reset first so its
        sale is not lost.

        Args:
            cart_id: Cart id as typed by the operator

        Returns:
            CartSession: The new listening session.

        Raises:
            InvalidCartId: If the cart id is blank.
            TransportUnavailable: If the bus is down; the terminal stays idle.
            PersistenceFailure: If a paid session could not be recorded.
        """
        cart_id = (cart_id or "").strip()
        if not cart_id:
            raise InvalidCartId("Cart id must not be empty")

        if self.session.state is SessionState.PAID:
            await self.reset()
        self._discard_session()

        session = CartSession(cart_id=cart_id, state=SessionState.LISTENING)
        handler = functools.partial(self._on_cart_message, session)
        try:
            session.topic = self.router.start_session(cart_id, handler)
        except TransportUnavailable as e:
            logger.error(f"Cannot listen for cart | cart_id={cart_id} | error={e}")
            self.notice = f"Message bus unavailable: {e}"
            raise

        self.session = session
        self.notice = None
        if self.listen_timeout:
            self._listen_timer = asyncio.create_task(self._expire_listening(session))
        logger.info(f"Session started | session_id={session.session_id} | cart_id={cart_id} | topic={session.topic}")
        return session

    async def _expire_listening(self, session: CartSession) -> None:
        await asyncio.sleep(self.listen_timeout)
        if session is self.session and session.state is SessionState.LISTENING:
            logger.warning(
                f"No cart message received | cart_id={session.cart_id} | timeout_seconds={self.listen_timeout}"
            )
            self._listen_timer = None
            self._discard_session()
            self.notice = f"Cart {session.cart_id} did not send its contents in time"

    async def _on_cart_message(self, session: CartSession, raw: RawPayload) -> None:
        """Bus handler for the session's cart topic."""
        if session is not self.session:
            logger.debug(f"Cart message for replaced session | session_id={session.session_id}")
            return

        try:
            resolution = await self.cart_filter.on_message(session, raw)
        except (MalformedPayload, EmptyCart) as e:
            logger.warning(f"Rejected cart message | cart_id={session.cart_id} | error={e}")
            self.notice = f"Cart message rejected: {e}"
            return
        except NoValidItems as e:
            logger.warning(f"Abandoning session | cart_id={session.cart_id} | error={e}")
            if session is self.session:
                self._discard_session()
                self.notice = str(e)
            return

        if resolution is None:
            return

        self._cancel_listen_timer()
        session.state = SessionState.POPULATED
        not_found = resolution.not_found
        self.notice = f"Products not found: {', '.join(not_found)}" if not_found else None

    def _find_item(self, product_id: str) -> int:
        for index, item in enumerate(self.session.items):
            if item.product_id == product_id:
                return index
        raise ItemNotInCart(product_id)

    def update_quantity(self, product_id: str, quantity: int) -> CartSession:
        """Change the quantity of a cart line. Quantities below 1 are ignored.

        Raises:
            InvalidSessionState: If the cart is not populated.
            ItemNotInCart: If the product is not in the cart.
        """
        self._require(SessionState.POPULATED)
        index = self._find_item(product_id)
        if quantity < 1:
            return self.session
        items = list(self.session.items)
        items[index] = items[index].model_copy(update={"quantity": quantity})
        self.session.items = items
        return self.session

    def remove_item(self, product_id: str) -> CartSession:
        """Remove a cart line.

        Raises:
            InvalidSessionState: If the cart is not populated.
            ItemNotInCart: If the product is not in the cart.
        """
        self._require(SessionState.POPULATED)
        index = self._find_item(product_id)
        self.session.items = self.session.items[:index] + self.session.items[index + 1 :]
        return self.session

    async def checkout(self, method: Union[PaymentMethod, str]) -> CheckoutAttempt:
        """Move a populated cart to payment.

        Args:
            method: ``tunai`` to wait for cash, ``transfer`` to open a hosted payment page

        Returns:
            CheckoutAttempt: The new attempt; transfer attempts carry the page URL.

        Raises:
            InvalidSessionState: If the cart is not populated.
            EmptyCart: If every line has been removed.
            CheckoutGatewayUnavailable: If the payment page could not be created;
                the cart stays populated.
        """
        method = PaymentMethod(method)
        self._require(SessionState.POPULATED)
        session = self.session
        if not session.items:
            raise EmptyCart("Cart has no items to check out")

        amount = session.total_amount
        if method is PaymentMethod.CASH:
            attempt = CheckoutAttempt(method=method, amount=amount)
        else:
            try:
                redirect_url = await self.gateway.create_checkout_session(amount)
            except CheckoutGatewayUnavailable as e:
                self.notice = str(e)
                raise
            if session is not self.session or session.state is not SessionState.POPULATED:
                raise InvalidSessionState("Session changed while the payment page was being created")
            attempt = CheckoutAttempt(method=method, amount=amount, redirect_url=redirect_url)

        self.checkout_attempt = attempt
        session.state = SessionState.AWAITING_PAYMENT
        self.notice = None
        logger.info(f"Checkout started | cart_id={session.cart_id} | method={method.value} | amount={amount}")
        return attempt

    def _return_to_cart(self) -> None:
        self.session.state = SessionState.POPULATED

    def cancel_checkout(self) -> CartSession:
        """Close the payment step and go back to the cart.

        Raises:
            InvalidSessionState: If no checkout is in progress.
        """
        self._require(SessionState.AWAITING_PAYMENT)
        self.checkout_attempt = None
        self._return_to_cart()
        return self.session

    async def observe_navigation(self, url: str) -> Optional[CheckoutOutcome]:
        """Feed one navigation event of the hosted payment page.

        Once an attempt has a verdict, later events for it are ignored.

        Args:
            url: URL the payment page navigated to

        Returns:
            The verdict reached by this event, or None.

        Raises:
            InvalidSessionState: If no transfer checkout is in progress.
            PersistenceFailure: If a settled sale could not be recorded.
        """
        attempt = self.checkout_attempt
        if attempt is not None and attempt.outcome is not None:
            return None
        self._require(SessionState.AWAITING_PAYMENT)
        if attempt is None or attempt.method is not PaymentMethod.TRANSFER:
            raise InvalidSessionState("No hosted checkout is in progress")

        outcome = self.classifier.classify(url)
        if outcome is None:
            return None

        attempt.outcome = outcome
        logger.info(f"Checkout outcome | cart_id={self.session.cart_id} | outcome={outcome.value} | url={url}")

        if outcome is CheckoutOutcome.SETTLED:
            await self._complete_payment(PaymentMethod.TRANSFER)
        elif outcome is CheckoutOutcome.PENDING:
            self._return_to_cart()
            self.notice = "Payment is pending; check the payment status or take another payment"
        else:
            self._return_to_cart()
            self.notice = "Payment failed or was cancelled; please try again"
        return outcome

    async def pay_cash(self, cash_paid: Union[Decimal, int, str]) -> SaleRecord:
        """Complete the sale with cash.

        Args:
            cash_paid: Cash tendered by the shopper

        Returns:
            SaleRecord: The recorded sale, with change.

        Raises:
            InvalidSessionState: If no checkout is in progress.
            InsufficientCash: If less than the total was tendered.
            PersistenceFailure: If the sale could not be recorded; the session stays paid.
        """
        self._require(SessionState.AWAITING_PAYMENT)
        cash = Decimal(cash_paid)
        total = self.session.total_amount
        if cash < total:
            raise InsufficientCash(f"Cash {cash} does not cover total {total}")

        if self.checkout_attempt is None or self.checkout_attempt.method is not PaymentMethod.CASH:
            logger.info(f"Hosted checkout dismissed for cash | cart_id={self.session.cart_id}")
            self.checkout_attempt = CheckoutAttempt(method=PaymentMethod.CASH, amount=total)
        return await self._complete_payment(PaymentMethod.CASH, cash)

    async def _complete_payment(self, method: PaymentMethod, cash_paid: Optional[Decimal] = None) -> SaleRecord:
        session = self.session
        sale = SaleRecord.from_session(session, method, cash_paid, cashier=self.cashier_name)
        session.state = SessionState.PAID
        self.sale = sale
        self.sale_persisted = False
        self.status_published = False
        logger.info(
            f"Sale paid | transaction_id={sale.transaction_id} | cart_id={sale.cart_id} | "
            f"method={method.value} | total={sale.total} | change={sale.change}"
        )

        failure: Optional[PersistenceFailure] = None
        try:
            await self._persist_sale(sale)
        except PersistenceFailure as e:
            failure = e
        # The shopper has paid; the cart hears about it even if the ledger is down
        if self.sale is sale and not self.status_published:
            self._publish_status(sale)
        if failure is not None:
            raise failure
        return sale

    async def _persist_sale(self, sale: SaleRecord) -> None:
        """Record ``sale``, joining a write already in flight instead of issuing another."""
        if self._pending_record is None:
            self._pending_record = asyncio.ensure_future(self.ledger.record(sale))
        pending = self._pending_record
        try:
            await asyncio.shield(pending)
        except PersistenceFailure as e:
            logger.error(f"Sale not recorded | transaction_id={sale.transaction_id} | error={e}")
            if self.sale is sale:
                self.notice = f"Sale {sale.transaction_id} was paid but could not be saved: {e}"
            raise
        finally:
            if pending.done() and self._pending_record is pending:
                self._pending_record = None
        if self.sale is sale:
            self.sale_persisted = True

    def _publish_status(self, sale: SaleRecord) -> None:
        event = PaymentStatusEvent.from_sale(sale)
        try:
            self.router.publish_status(sale.cart_id, event)
        except TransportUnavailable as e:
            logger.warning(f"Payment status not published | cart_id={sale.cart_id} | error={e}")
            return
        self.status_published = True

    async def reset(self) -> CartSession:
        """Finish with the current cart and return to idle.

        A paid session is only left once its sale is recorded; the status
        event is retried once and then given up.

        Returns:
            CartSession: The new idle session.

        Raises:
            PersistenceFailure: If the paid sale still cannot be recorded.
        """
        if self.session.state is SessionState.PAID:
            sale = self.sale
            if not self.sale_persisted:
                await self._persist_sale(sale)
            if self.sale is not sale:
                return self.session
            if not self.status_published:
                self._publish_status(sale)
        cart_id = self.session.cart_id
        self._discard_session()
        self.notice = None
        logger.info(f"Session reset | cart_id={cart_id}")
        return self.session

    def close(self) -> None:
        """Release the subscription and timers; used on shutdown."""
        self._cancel_listen_timer()
        self.router.end_session()
