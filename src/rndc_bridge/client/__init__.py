from rndc_bridge.client.api_client import ApiBatchSource, BatchApiClient
from rndc_bridge.client.poller import Notification, PollPhase, PollState, ReconciliationPoller, completion_notice
from rndc_bridge.client.workflow import SubmissionWorkflow

__all__ = [
    "ApiBatchSource",
    "BatchApiClient",
    "Notification",
    "PollPhase",
    "PollState",
    "ReconciliationPoller",
    "SubmissionWorkflow",
    "completion_notice",
]
