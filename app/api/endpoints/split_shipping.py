import logging
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile
from pydantic import ValidationError

from app.core.cache import flow_store
from app.core.config import settings
from app.schemas.split_shipping import (
    AllocationOut,
    CommandOut,
    DestinationOut,
    FlowCreate,
    FlowOut,
    IssueOut,
    SubmissionReportOut,
    command_adapter,
)
from app.services.checkout import reload_flow, start_flow
from app.services.commerce import CommerceClient, CommerceConflictError, CommerceError
from app.split_shipping.csv_import import parse_address_rows
from app.split_shipping.errors import (
    CsvImportError,
    FlowBusyError,
    InvalidTransitionError,
    SplitShippingError,
    ValidationIssue,
)
from app.split_shipping.flow import CheckoutFlow
from app.split_shipping.sync import SubmissionError, SubmissionReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/split-shipping", tags=["Split Shipping"])


def get_client_factory() -> Callable[[Optional[str]], CommerceClient]:
    """Builds a commerce client for a base URL (overridden in tests)."""
    return lambda base_url=None: CommerceClient(base_url=base_url)


def _issue(i: ValidationIssue) -> IssueOut:
    return IssueOut(code=i.code, message=i.message, destination_key=i.destination_key, line_item_id=i.line_item_id)


def _report(report: Optional[SubmissionReport]) -> Optional[SubmissionReportOut]:
    if report is None:
        return None
    return SubmissionReportOut(
        mode=report.mode,
        completed_steps=list(report.completed_steps),
        failed_step=report.failed_step,
        error=report.error,
        cart_version=report.cart_version,
    )


def _serialize(flow: CheckoutFlow) -> FlowOut:
    registry = flow.registry
    destinations = [
        DestinationOut(
            key=d.key,
            shipping_key=d.shipping_key,
            address=d.address,
            allocations=[AllocationOut(line_item_id=a.line_item_id, quantity=a.quantity) for a in d.allocations],
            shipping_method_id=d.shipping_method_id,
            gift_message=d.gift_message,
            delivery_selected=d.delivery_selected,
            is_preview=d.is_preview,
            complete=registry.is_destination_complete(d),
        )
        for d in registry.destinations
    ]
    issues = flow.submit_issues()
    return FlowOut(
        cart_id=flow.cart_id,
        cart_version=flow.cart.version,
        cart_shipping_mode=flow.cart_shipping_mode,
        split_mode=flow.split_mode,
        can_use_split_shipping=flow.can_use_split_shipping,
        step=flow.wizard.step if flow.split_mode else None,
        shipping_address=flow.single.shipping_address,
        billing_address=flow.single.billing_address,
        billing_same_as_shipping=flow.single.billing_same_as_shipping,
        selected_shipping_method_id=flow.single.shipping_method_id,
        destinations=destinations,
        review_rows=list(flow.wizard.rows),
        remaining_quantities=dict(flow.ledger.snapshot()),
        has_unallocated_units=flow.ledger.has_unallocated_units(),
        can_submit=not issues,
        submit_issues=[_issue(i) for i in issues],
        countries=flow.reference.countries,
        shipping_methods=flow.reference.shipping_methods,
        user_addresses=flow.reference.user_addresses,
        loading=flow.loading,
        error=flow.error,
        last_submission=_report(flow.last_submission),
    )


async def _get_flow(cart_id: str) -> CheckoutFlow:
    flow = await flow_store.get(cart_id)
    if flow is None:
        raise HTTPException(status_code=404, detail="Checkout flow not found")
    return flow


def _backend_error(e: CommerceError) -> HTTPException:
    status = 409 if isinstance(e, CommerceConflictError) else 502
    return HTTPException(status_code=status, detail=str(e))


@router.post("/flows", response_model=FlowOut)
async def create_flow(payload: FlowCreate, client_factory=Depends(get_client_factory)):
    """Fetch the cart and reference data and derive a fresh flow. Replaces any flow for the same cart."""
    existing = await flow_store.get(payload.cart_id)
    if existing is not None and existing.loading:
        raise HTTPException(status_code=409, detail="Cart is being submitted")
    client = client_factory(payload.base_url)
    try:
        flow = await start_flow(
            client,
            payload.cart_id,
            user_id=payload.user_id,
            line_item_id=payload.line_item_id,
            locale=payload.locale,
        )
    except CommerceError as e:
        logger.error(f"Failed to start flow for cart {payload.cart_id}: {e}")
        raise _backend_error(e)
    finally:
        await client.aclose()
    await flow_store.set(flow.cart_id, flow, settings.FLOW_TTL_SEC)
    return _serialize(flow)


@router.get("/flows/{cart_id}", response_model=FlowOut)
async def get_flow(cart_id: str):
    return _serialize(await _get_flow(cart_id))


@router.delete("/flows/{cart_id}")
async def delete_flow(cart_id: str):
    flow = await _get_flow(cart_id)
    if flow.loading:
        raise HTTPException(status_code=409, detail="Cart is being submitted")
    await flow_store.delete(cart_id)
    return {"deleted": True, "cart_id": cart_id}


@router.post("/flows/{cart_id}/reload", response_model=FlowOut)
async def reload(cart_id: str, client_factory=Depends(get_client_factory)):
    flow = await _get_flow(cart_id)
    client = client_factory(flow.base_url)
    try:
        await reload_flow(client, flow)
    except FlowBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CommerceError as e:
        flow.error = str(e)
        raise _backend_error(e)
    finally:
        await client.aclose()
    return _serialize(flow)


@router.post("/flows/{cart_id}/commands", response_model=CommandOut)
async def dispatch_command(cart_id: str, payload: Dict[str, Any] = Body(...)):
    """Apply one command. Validation problems come back as issues with ``accepted=false``."""
    flow = await _get_flow(cart_id)
    try:
        command = command_adapter.validate_python(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))
    try:
        result = flow.dispatch(command)
    except (FlowBusyError, InvalidTransitionError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SplitShippingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CommandOut(accepted=result.accepted, issues=[_issue(i) for i in result.issues], flow=_serialize(flow))


@router.post("/flows/{cart_id}/upload", response_model=FlowOut)
async def upload_addresses(cart_id: str, file: UploadFile = File(...)):
    """Import an address CSV (UPLOAD -> REVIEW)."""
    flow = await _get_flow(cart_id)
    if not flow.csv_enabled:
        raise HTTPException(status_code=404, detail="CSV import is disabled")
    raw = await file.read()
    if len(raw) > settings.CSV_MAX_BYTES:
        raise HTTPException(status_code=413, detail="CSV file too large")
    try:
        rows = parse_address_rows(raw.decode("utf-8-sig"))
    except UnicodeDecodeError:
        raise HTTPException(status_code=422, detail="CSV must be UTF-8 encoded")
    except CsvImportError as e:
        raise HTTPException(status_code=422, detail=str(e))
    try:
        flow.import_rows(rows)
    except (FlowBusyError, InvalidTransitionError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SplitShippingError as e:
        raise HTTPException(status_code=422, detail=str(e))
    logger.info(f"Imported {len(rows)} address rows for cart {cart_id} from {file.filename}")
    return _serialize(flow)


@router.post("/flows/{cart_id}/submit", response_model=FlowOut)
async def submit_flow(cart_id: str, client_factory=Depends(get_client_factory)):
    """Publish the allocation to the cart. Steps already applied are not rolled back on failure."""
    flow = await _get_flow(cart_id)
    client = client_factory(flow.base_url)
    try:
        await flow.submit(client)
    except FlowBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SubmissionError as e:
        status = 409 if isinstance(e.cause, CommerceConflictError) else 502
        raise HTTPException(
            status_code=status,
            detail={
                "message": str(e),
                "completedSteps": e.report.completed_steps,
                "failedStep": e.report.failed_step,
            },
        )
    except CommerceError as e:
        raise _backend_error(e)
    except SplitShippingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    finally:
        await client.aclose()
    return _serialize(flow)
