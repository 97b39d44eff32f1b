import asyncio

from rndc_bridge.client.poller import PollPhase, ReconciliationPoller
from rndc_bridge.client.workflow import SubmissionWorkflow
from rndc_bridge.domain.models import Batch, BatchStatus, OperationKind
from rndc_bridge.exceptions import ConnectionFailure
from rndc_bridge.records.factory import SubmissionRecordFactory


class InMemoryBatchApi:
    """Accepts batches and reports them completed on the first poll."""

    def __init__(self, fail_submit=False):
        self.fail_submit = fail_submit
        self.submitted = []

    async def submit(self, records, ws_url=None):
        if self.fail_submit:
            raise ConnectionFailure("Error de conexión: refused")
        self.submitted.append(list(records))
        return f"batch-{len(self.submitted)}"

    async def fetch(self, batch_id):
        records = self.submitted[-1]
        batch = Batch(
            id=batch_id,
            type="cumplido_manifiesto",
            total_records=len(records),
            success_count=len(records),
            pending_count=0,
            status=BatchStatus.COMPLETED,
        )
        return batch, records


MANIFEST_ROWS = [
    {"NUMMANIFIESTOCARGA": "9001", "FECHALLEGADADESCARGUE": "20/06/2024"},
    {"NUMMANIFIESTOCARGA": "9002", "FECHALLEGADADESCARGUE": "21/06/2024"},
]


def _workflow(api, notes, credentials):
    poller = ReconciliationPoller(api, interval=0, notify=notes.append)
    return SubmissionWorkflow(SubmissionRecordFactory(credentials), api, poller)


def test_prepare_submit_and_reconcile(credentials):
    notes = []
    api = InMemoryBatchApi()

    async def scenario():
        workflow = _workflow(api, notes, credentials)
        await workflow.prepare(MANIFEST_ROWS, OperationKind.MANIFEST_COMPLETION)
        batch_id = await workflow.submit()
        state = await workflow.poller.wait()
        return batch_id, state

    batch_id, state = asyncio.run(scenario())
    assert batch_id == "batch-1"
    assert state.phase == PollPhase.DONE
    assert list(state.results) == ["9001", "9002"]
    assert [n.level for n in notes] == ["info", "success"]


def test_empty_submission_is_a_no_op(credentials):
    notes = []
    api = InMemoryBatchApi()

    async def scenario():
        workflow = _workflow(api, notes, credentials)
        await workflow.prepare([], OperationKind.MANIFEST_COMPLETION)
        return await workflow.submit(), workflow.poller.phase

    batch_id, phase = asyncio.run(scenario())
    assert batch_id is None
    assert phase == PollPhase.IDLE
    assert api.submitted == []
    assert notes == []


def test_failed_submission_leaves_state_unchanged(credentials):
    notes = []
    api = InMemoryBatchApi(fail_submit=True)

    async def scenario():
        workflow = _workflow(api, notes, credentials)
        records = await workflow.prepare(MANIFEST_ROWS, OperationKind.MANIFEST_COMPLETION)
        return await workflow.submit(), workflow.poller.phase, workflow.records is records

    batch_id, phase, kept = asyncio.run(scenario())
    assert batch_id is None
    assert phase == PollPhase.IDLE
    assert kept
    assert [n.level for n in notes] == ["error"]
