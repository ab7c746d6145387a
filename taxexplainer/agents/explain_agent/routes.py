"""
routes.py — ExplainAgent HTTP endpoint.

POST /api/explain — validate → tax numbers → retrieval → guarded generation → response
                    (+ webhook notification after the response is sent)

Validation is the ExplainRequest schema: an invalid body never reaches the
orchestrator (422 envelope from main.py). app.state resources (orchestrator,
notifier) are set in main.py lifespan.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from taxexplainer.agents.explain_agent.notifier import build_notification_payload
from taxexplainer.agents.explain_agent.orchestrator import ExplanationOrchestrator
from taxexplainer.agents.explain_agent.schemas import ExplainResponse
from taxexplainer.agents.input_agent.schemas import ExplainRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Explain Agent"])


@router.post("/explain", response_model=ExplainResponse)
async def explain_endpoint(
    body: ExplainRequest,
    request: Request,
    background_tasks: BackgroundTasks,
) -> ExplainResponse:
    """
    Compare Old vs New regime for the given salary and deductions and attach a
    retrieval-grounded explanation.

    taxNumbers is always present. aiSummary degrades to a placeholder when the
    model is unconfigured or every candidate model failed; sources is empty
    when retrieval is unavailable.
    """
    orchestrator: ExplanationOrchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Explain pipeline not initialized. Please restart the server.")

    response = await orchestrator.explain(body)
    logger.info(
        "Explain complete verdict=%s savings=%d sources=%d",
        response.verdict, response.savings, len(response.sources),
    )

    notifier = getattr(request.app.state, "notifier", None)
    if notifier is not None and notifier.enabled:
        background_tasks.add_task(notifier.send, build_notification_payload(body, response))

    return response
