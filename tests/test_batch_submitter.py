"""
Tests for BatchSubmitter against a stubbed Hanteo API: wire format, retry,
token re-authentication, response codes and chunked submission.
"""
import httpx
import pytest

from app.core.errors import (
    AuthenticationError,
    BatchTooLargeError,
    PartialSubmissionError,
    ReportingAPIError,
    TransactionValidationError,
)
from app.models.sales import TransactionStatus

from conftest import NOW, accept_all, make_transaction


def _transactions(count, order_id="1001"):
    return [make_transaction(order_id=order_id, line_item_id=str(i)) for i in range(1, count + 1)]


def _partial(failures):
    def respond(records):
        return httpx.Response(200, json={
            "code": 101,
            "message": "Partial success",
            "resultData": {
                "requestCount": len(records),
                "successCount": len(records) - len(failures),
                "failCount": len(failures),
                "failData": failures,
            },
        })
    return respond


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_request(self, submitter, hanteo_stub):
        outcome = await submitter.submit([])
        assert outcome.request_count == 0
        assert outcome.success_count == 0
        assert outcome.message == "No data to send"
        assert hanteo_stub.token_calls == 0
        assert hanteo_stub.submit_calls == 0

    @pytest.mark.asyncio
    async def test_oversize_batch_rejected(self, submitter, hanteo_stub):
        with pytest.raises(BatchTooLargeError) as exc_info:
            await submitter.submit(_transactions(101))
        assert exc_info.value.size == 101
        assert hanteo_stub.submit_calls == 0

    @pytest.mark.asyncio
    async def test_invalid_transaction_rejected_before_sending(self, submitter, hanteo_stub):
        batch = [make_transaction(line_item_id="1"), make_transaction(line_item_id="2", quantity=0)]
        with pytest.raises(TransactionValidationError) as exc_info:
            await submitter.submit(batch)
        assert [key for key, _ in exc_info.value.invalid] == ["1001:5001:2"]
        assert hanteo_stub.submit_calls == 0


class TestWireFormat:

    @pytest.mark.asyncio
    async def test_record_fields(self, submitter, hanteo_stub):
        outcome = await submitter.submit([make_transaction(quantity=2)])

        assert outcome.code == 100
        assert outcome.success_count == 1
        request, records = hanteo_stub.submit_requests[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert records == [{
            "familyCode": "FAM01",
            "branchCode": "BR01",
            "barcode": "8809633189505",
            "albumName": "Summer Album - Ver. A",
            "salesVolume": 2,
            "nation": "KR",
            "addrTop": "Seoul",
            "swsSex": "W",
            "swsBirth": "1998",
            "spCode": "7",
            "realTime": int(NOW),
            "opVal": "1001-5001-1",
        }]

    @pytest.mark.asyncio
    async def test_missing_demographics_are_omitted(self, submitter, hanteo_stub):
        await submitter.submit([make_transaction(customer=None)])
        record = hanteo_stub.submit_requests[0][1][0]
        assert "swsSex" not in record
        assert "spCode" not in record
        assert record["nation"] == "KR"

    def test_timestamped_dedup_token(self, submitter):
        submitter.stable_dedup_token = False
        batch = submitter.prepare([make_transaction()])
        assert batch.records[0].op_val == f"1001-5001-1-{int(NOW * 1000)}"
        assert list(batch.by_token) == [batch.records[0].op_val]


class TestTokenRejection:

    @pytest.mark.asyncio
    async def test_401_reauthenticates_and_resends(self, submitter, auth, hanteo_stub):
        await auth.ensure_valid()
        hanteo_stub.submit_responses.append(httpx.Response(401, json={"code": 401}))

        outcome = await submitter.submit([make_transaction()])

        assert outcome.success_count == 1
        # one handshake for the resend, on top of the initial one
        assert hanteo_stub.token_calls == 2
        assert hanteo_stub.submit_calls == 2
        assert hanteo_stub.submit_requests[1][0].headers["Authorization"] == "Bearer tok-2"

    @pytest.mark.asyncio
    async def test_expired_token_code_reauthenticates(self, submitter, hanteo_stub):
        hanteo_stub.submit_responses.append(
            httpx.Response(200, json={"code": 822, "message": "Token expired"})
        )
        outcome = await submitter.submit([make_transaction()])
        assert outcome.code == 100
        assert hanteo_stub.token_calls == 2
        assert hanteo_stub.submit_calls == 2

    @pytest.mark.asyncio
    async def test_second_rejection_raises(self, submitter, auth, hanteo_stub):
        await auth.ensure_valid()
        hanteo_stub.submit_responses.extend([
            httpx.Response(401, json={"code": 401}),
            httpx.Response(401, json={"code": 401}),
        ])

        with pytest.raises(AuthenticationError):
            await submitter.submit([make_transaction()])
        assert hanteo_stub.token_calls == 2
        assert hanteo_stub.submit_calls == 2


class TestRetry:

    @pytest.mark.asyncio
    async def test_5xx_then_success(self, submitter, hanteo_stub, clock):
        hanteo_stub.submit_responses.append(httpx.Response(500, text="oops"))
        outcome = await submitter.submit([make_transaction()])
        assert outcome.success_count == 1
        assert hanteo_stub.submit_calls == 2
        assert clock.sleeps == [1.0]

    @pytest.mark.asyncio
    async def test_5xx_exhausts_retries(self, submitter, hanteo_stub, clock):
        hanteo_stub.submit_responses.extend([httpx.Response(503, text="down")] * 4)
        with pytest.raises(ReportingAPIError) as exc_info:
            await submitter.submit([make_transaction()])
        assert exc_info.value.status_code == 503
        assert hanteo_stub.submit_calls == 4
        assert clock.sleeps == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_4xx_is_not_retried(self, submitter, hanteo_stub, clock):
        hanteo_stub.submit_responses.append(httpx.Response(400, json={"code": 603, "message": "bad format"}))
        with pytest.raises(ReportingAPIError):
            await submitter.submit([make_transaction()])
        assert hanteo_stub.submit_calls == 1
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_server_error_code_is_retried(self, submitter, hanteo_stub, clock):
        hanteo_stub.submit_responses.append(httpx.Response(200, json={"code": 703, "message": "busy"}))
        outcome = await submitter.submit([make_transaction()])
        assert outcome.code == 100
        assert hanteo_stub.submit_calls == 2


class TestResponseCodes:

    @pytest.mark.asyncio
    async def test_invalid_data_raises(self, submitter, hanteo_stub):
        hanteo_stub.submit_responses.append(httpx.Response(200, json={"code": 604, "message": "Invalid data"}))
        with pytest.raises(ReportingAPIError) as exc_info:
            await submitter.submit([make_transaction()])
        assert exc_info.value.response_code == 604
        assert hanteo_stub.submit_calls == 1

    @pytest.mark.asyncio
    async def test_partial_success_raises_with_failures(self, submitter, hanteo_stub):
        hanteo_stub.submit_responses.append(_partial({"1001-5001-2": "UC"}))
        with pytest.raises(PartialSubmissionError) as exc_info:
            await submitter.submit(_transactions(2))
        assert exc_info.value.failures_by_token == {"1001-5001-2": "UC"}
        assert exc_info.value.outcome.success_count == 1


class TestChunked:

    @pytest.mark.asyncio
    async def test_splits_into_chunks_with_pause(self, submitter, hanteo_stub, clock):
        transactions = _transactions(250)
        result = await submitter.submit_in_chunks(transactions)

        assert [len(records) for _, records in hanteo_stub.submit_requests] == [100, 100, 50]
        assert clock.sleeps == [1.0, 1.0]
        assert result.total_sent == 250
        assert result.total_success == 250
        assert result.total_failed == 0
        assert len(result.batch_results) == 3
        assert all(tx.status == TransactionStatus.SENT for tx in transactions)

    @pytest.mark.asyncio
    async def test_failing_chunk_does_not_stop_the_run(self, submitter, hanteo_stub):
        transactions = _transactions(5)
        hanteo_stub.submit_responses.extend([
            accept_all,
            httpx.Response(400, json={"code": 603, "message": "bad format"}),
        ])

        result = await submitter.submit_in_chunks(transactions, chunk_size=2)

        assert hanteo_stub.submit_calls == 3
        assert result.total_sent == 3
        assert result.total_success == 3
        assert result.total_failed == 2
        failed = [f.transaction.line_item_id for f in result.failed_transactions]
        assert failed == ["3", "4"]
        assert transactions[2].status == TransactionStatus.FAILED
        assert transactions[4].status == TransactionStatus.SENT

    @pytest.mark.asyncio
    async def test_transport_failure_isolated_to_its_chunk(self, submitter, hanteo_stub, clock):
        transactions = _transactions(6)
        # first chunk accepted, second chunk loses the connection on every attempt
        hanteo_stub.submit_responses.append(accept_all)
        hanteo_stub.submit_responses.extend([httpx.ConnectError("connection reset")] * 4)

        result = await submitter.submit_in_chunks(transactions, chunk_size=2)

        assert result.total_sent == 4
        assert result.total_success == 4
        assert result.total_failed == 2
        assert [tx.status for tx in transactions] == [
            TransactionStatus.SENT, TransactionStatus.SENT,
            TransactionStatus.FAILED, TransactionStatus.FAILED,
            TransactionStatus.SENT, TransactionStatus.SENT,
        ]
        assert "Network error" in transactions[2].error_detail
        assert {f.error for f in result.failed_transactions} == {transactions[2].error_detail}
        assert clock.sleeps == [1.0, 1.0, 2.0, 4.0, 1.0]

    @pytest.mark.asyncio
    async def test_partial_success_is_reconciled_per_record(self, submitter, hanteo_stub):
        transactions = _transactions(3)
        hanteo_stub.submit_responses.append(_partial({"1001-5001-2": "UC"}))

        result = await submitter.submit_in_chunks(transactions)

        assert result.total_sent == 3
        assert result.total_success == 2
        assert result.total_failed == 1
        assert [tx.status for tx in transactions] == [
            TransactionStatus.SENT, TransactionStatus.FAILED, TransactionStatus.SENT,
        ]
        assert transactions[1].error_detail == "UC: Unregistered Barcode"
        assert result.failed_transactions[0].error == "UC: Unregistered Barcode"

    @pytest.mark.asyncio
    async def test_chunk_size_capped_at_batch_limit(self, submitter, hanteo_stub):
        await submitter.submit_in_chunks(_transactions(150), chunk_size=500)
        assert [len(records) for _, records in hanteo_stub.submit_requests] == [100, 50]

    @pytest.mark.asyncio
    async def test_partial_failure_targets_the_right_parcel(self, submitter, hanteo_stub):
        first = make_transaction(line_item_id="100", fulfillment_id="501", quantity=2)
        second = make_transaction(line_item_id="100", fulfillment_id="502", quantity=1)
        hanteo_stub.submit_responses.append(_partial({"1001-502-100": "NT"}))

        result = await submitter.submit_in_chunks([first, second])

        assert [r["opVal"] for r in hanteo_stub.submit_requests[0][1]] == ["1001-501-100", "1001-502-100"]
        assert first.status == TransactionStatus.SENT
        assert second.status == TransactionStatus.FAILED
        assert second.error_detail == "NT: Not Today Data"
        assert result.total_failed == 1
