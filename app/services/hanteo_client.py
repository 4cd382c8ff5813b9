"""
Hanteo Batch Submitter
======================

Submits sales transactions to the Hanteo real-time album data endpoint.

submit(transactions)
    One POST of at most ``max_batch_size`` records:
      1. empty input → zero-count outcome, no network call
      2. oversize input → BatchTooLargeError
      3. invalid records → TransactionValidationError
      4. ensure a valid token, POST with retry/backoff (transport errors, 5xx)
      5. code 100 → BatchOutcome; 101 → PartialSubmissionError; other → ReportingAPIError
      6. token rejected (HTTP 401, code 821/822) → invalidate, re-authenticate
         and resend once; a second rejection raises AuthenticationError

submit_in_chunks(transactions)
    Sequential chunks with a pause between them. A failing chunk marks its
    transactions failed and the run continues with the next chunk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from app.config import settings
from app.core.clock import Clock, system_clock
from app.core.errors import (
    AuthenticationError,
    BatchTooLargeError,
    PartialSubmissionError,
    ReportingAPIError,
    TokenRejectedError,
    TransactionValidationError,
)
from app.core.retry import RetryPolicy, retry_with_backoff
from app.models.sales import (
    BatchOutcome,
    ChunkedSubmitResult,
    FailedTransaction,
    HanteoSalesRecord,
    Transaction,
)
from app.services import hanteo_codes
from app.services.hanteo_auth import AuthToken, AuthTokenManager
from app.services.validators import (
    convert_gender,
    generate_op_val,
    is_same_kst_day,
    validate_batch,
)

logger = logging.getLogger(__name__)

# First send plus one resend after re-authentication.
_MAX_SUBMIT_ATTEMPTS = 2

_RETRYABLE_RESPONSE_CODES = frozenset({hanteo_codes.NETWORK_ERROR, hanteo_codes.SERVER_ERROR})


@dataclass(frozen=True)
class PreparedBatch:
    records: List[HanteoSalesRecord]
    by_token: Dict[str, Transaction]


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


class BatchSubmitter:
    def __init__(
        self,
        http: httpx.AsyncClient,
        auth: AuthTokenManager,
        *,
        base_url: Optional[str] = None,
        family_code: Optional[str] = None,
        branch_code: Optional[str] = None,
        clock: Clock = system_clock,
        retry_policy: Optional[RetryPolicy] = None,
        max_batch_size: Optional[int] = None,
        batch_delay_s: Optional[float] = None,
        stable_dedup_token: Optional[bool] = None,
    ):
        self._http = http
        self._auth = auth
        self._base_url = (base_url or settings.hanteo_base_url).rstrip("/")
        self.family_code = family_code or settings.hanteo_family_code or ""
        self.branch_code = branch_code or settings.hanteo_branch_code or ""
        self._clock = clock
        self._retry_policy = retry_policy or RetryPolicy(
            retries=settings.hanteo_retry_attempts,
            initial_delay_s=settings.hanteo_retry_delay_s,
            factor=settings.hanteo_retry_factor,
            max_delay_s=settings.hanteo_retry_max_delay_s,
        )
        self.max_batch_size = max_batch_size or settings.hanteo_max_batch_size
        self.batch_delay_s = batch_delay_s if batch_delay_s is not None else settings.hanteo_batch_delay_s
        self.stable_dedup_token = (
            stable_dedup_token if stable_dedup_token is not None else settings.hanteo_stable_dedup_token
        )

    # ---- Wire format ----

    def op_val_for(self, tx: Transaction, submitted_at: float) -> str:
        if self.stable_dedup_token:
            return generate_op_val(tx.order_id, tx.line_item_id, fulfillment_id=tx.fulfillment_id)
        return generate_op_val(tx.order_id, tx.line_item_id, submitted_at, fulfillment_id=tx.fulfillment_id)

    def to_wire_record(self, tx: Transaction, submitted_at: float) -> HanteoSalesRecord:
        if not is_same_kst_day(tx.transaction_time, submitted_at):
            logger.warning(
                "Transaction is not from today (KST); Hanteo may reject it",
                extra={"order": tx.order_display_name, "line_item_id": tx.line_item_id},
            )
        customer = tx.customer
        shipping = tx.shipping
        return HanteoSalesRecord(
            family_code=self.family_code,
            branch_code=self.branch_code,
            barcode=tx.report_barcode,
            album_name=tx.display_name,
            sales_volume=tx.quantity,
            nation=shipping.country_code if shipping else None,
            addr_top=shipping.city if shipping else None,
            sws_sex=convert_gender(customer.gender) if customer else None,
            sws_birth=customer.birth_year if customer else None,
            sp_code=customer.id if customer else None,
            real_time=int(tx.transaction_time),
            op_val=self.op_val_for(tx, submitted_at),
        )

    def prepare(self, transactions: Sequence[Transaction]) -> PreparedBatch:
        if len(transactions) > self.max_batch_size:
            raise BatchTooLargeError(len(transactions), self.max_batch_size)

        _, invalid = validate_batch(transactions)
        if invalid:
            raise TransactionValidationError(
                [(item.transaction.key, [str(e) for e in item.errors]) for item in invalid]
            )

        submitted_at = self._clock.now()
        records: List[HanteoSalesRecord] = []
        by_token: Dict[str, Transaction] = {}
        for tx in transactions:
            record = self.to_wire_record(tx, submitted_at)
            records.append(record)
            by_token[record.op_val] = tx
        return PreparedBatch(records=records, by_token=by_token)

    # ---- Single batch ----

    async def submit(self, transactions: Sequence[Transaction]) -> BatchOutcome:
        if not transactions:
            logger.warning("No transactions to send")
            return BatchOutcome.empty()
        return await self._send(self.prepare(transactions))

    async def _send(self, batch: PreparedBatch) -> BatchOutcome:
        logger.info("Sending %d transactions to Hanteo", len(batch.records))
        wire = [record.to_wire() for record in batch.records]

        attempt = 0
        while True:
            attempt += 1
            token = await self._auth.ensure_valid()
            try:
                payload = await retry_with_backoff(
                    lambda: self._post_records(wire, token),
                    policy=self._retry_policy,
                    clock=self._clock,
                    description="Hanteo sales data submission",
                )
            except TokenRejectedError as exc:
                self._auth.invalidate(token.value)
                if attempt >= _MAX_SUBMIT_ATTEMPTS:
                    raise AuthenticationError(
                        f"Token rejected after re-authentication: {exc.detail}",
                        status_code=exc.status_code,
                    ) from exc
                logger.warning("Hanteo token rejected (%s), re-authenticating", exc.detail)
                continue
            return self._interpret(payload)

    async def _post_records(self, wire: List[Dict[str, Any]], token: AuthToken) -> Dict[str, Any]:
        url = f"{self._base_url}{hanteo_codes.SALES_DATA_ENDPOINT}"
        try:
            response = await self._http.post(
                url,
                json=wire,
                headers={
                    "Authorization": f"Bearer {token.value}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TransportError as exc:
            raise ReportingAPIError(f"Network error: {exc}", retryable=True) from exc

        body = _safe_json(response)
        code = body.get("code") if isinstance(body, dict) else None

        if response.status_code == 401:
            raise TokenRejectedError("HTTP 401 Unauthorized", response_code=code, status_code=401)
        if response.status_code >= 500:
            raise ReportingAPIError(
                f"Hanteo returned HTTP {response.status_code}",
                response_code=code,
                status_code=response.status_code,
                payload=body,
                retryable=True,
            )
        if code in hanteo_codes.TOKEN_REJECTION_CODES:
            raise TokenRejectedError(
                body.get("message") or "Token rejected",
                response_code=code,
                status_code=response.status_code,
            )
        if code in _RETRYABLE_RESPONSE_CODES:
            raise ReportingAPIError(
                f"Hanteo reported a transient failure: {body.get('message')}",
                response_code=code,
                status_code=response.status_code,
                payload=body,
                retryable=True,
            )
        if response.status_code >= 400:
            raise ReportingAPIError(
                f"Hanteo rejected the request: HTTP {response.status_code}",
                response_code=code,
                status_code=response.status_code,
                payload=body,
            )
        if not isinstance(body, dict):
            raise ReportingAPIError(
                "Hanteo returned a non-JSON response",
                status_code=response.status_code,
                payload=body,
            )
        return body

    @staticmethod
    def _interpret(payload: Dict[str, Any]) -> BatchOutcome:
        outcome = BatchOutcome.from_response(payload)
        if outcome.code == hanteo_codes.SUCCESS:
            logger.info(
                "Hanteo accepted batch: %d/%d records",
                outcome.success_count, outcome.request_count,
            )
            return outcome
        if outcome.code == hanteo_codes.PARTIAL_SUCCESS:
            logger.warning(
                "Hanteo partial success: %d succeeded, %d failed",
                outcome.success_count, outcome.fail_count,
            )
            raise PartialSubmissionError(outcome, outcome.failures_by_token, payload=payload)
        raise ReportingAPIError(
            f"Sales data submission failed: {outcome.message}",
            response_code=outcome.code,
            payload=payload,
        )

    # ---- Chunked ----

    async def submit_in_chunks(
        self,
        transactions: Sequence[Transaction],
        chunk_size: Optional[int] = None,
        inter_chunk_delay_s: Optional[float] = None,
    ) -> ChunkedSubmitResult:
        size = min(chunk_size or self.max_batch_size, self.max_batch_size)
        delay = self.batch_delay_s if inter_chunk_delay_s is None else inter_chunk_delay_s
        result = ChunkedSubmitResult()
        chunks = [list(transactions[i:i + size]) for i in range(0, len(transactions), size)]

        for index, chunk in enumerate(chunks):
            if index > 0 and delay > 0:
                await self._clock.sleep(delay)
            logger.info("Processing chunk %d/%d (%d transactions)", index + 1, len(chunks), len(chunk))

            batch: Optional[PreparedBatch] = None
            try:
                batch = self.prepare(chunk)
                outcome = await self._send(batch)
            except PartialSubmissionError as exc:
                self._reconcile_partial(chunk, batch, exc, result)
                continue
            except Exception as exc:
                logger.error("Chunk %d failed: %s", index + 1, exc)
                message = str(exc)
                result.total_failed += len(chunk)
                for tx in chunk:
                    tx.mark_failed(message)
                    result.failed_transactions.append(FailedTransaction(tx, message))
                continue

            result.batch_results.append(outcome)
            result.total_sent += len(chunk)
            result.total_success += outcome.success_count
            result.total_failed += outcome.fail_count
            for tx in chunk:
                tx.mark_sent()

        logger.info(
            "Chunked submission complete: sent=%d success=%d failed=%d",
            result.total_sent, result.total_success, result.total_failed,
        )
        return result

    @staticmethod
    def _reconcile_partial(
        chunk: List[Transaction],
        batch: Optional[PreparedBatch],
        exc: PartialSubmissionError,
        result: ChunkedSubmitResult,
    ) -> None:
        outcome: BatchOutcome = exc.outcome
        result.batch_results.append(outcome)
        result.total_sent += len(chunk)
        result.total_success += outcome.success_count
        result.total_failed += outcome.fail_count

        by_token = batch.by_token if batch is not None else {}
        rejected = set()
        for token, status in exc.failures_by_token.items():
            tx = by_token.get(token)
            if tx is None:
                logger.warning("Hanteo reported an unknown opVal: %s", token)
                continue
            error = f"{status}: {hanteo_codes.describe_record_status(status)}"
            tx.mark_failed(error)
            rejected.add(tx.key)
            result.failed_transactions.append(FailedTransaction(tx, error))

        for tx in chunk:
            if tx.key not in rejected:
                tx.mark_sent()
