from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from crq_webhook.api.dependencies import get_admission_handler
from crq_webhook.application.services.admission_handler import AdmissionHandler
from crq_webhook.domain.models import AdmissionKind


router = APIRouter(tags=["admission"])


async def _review(request: Request, handler: AdmissionHandler, expected: AdmissionKind | None) -> JSONResponse:
    body = await request.body()
    status_code, payload = await handler.handle(body, expected)
    return JSONResponse(status_code=status_code, content=payload)


@router.post("/validate--v1-pod", summary="Validate Pod admission")
async def validate_pod(request: Request, handler: AdmissionHandler = Depends(get_admission_handler)) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.POD)


@router.post("/validate--v1-persistentvolumeclaim", summary="Validate PersistentVolumeClaim admission")
async def validate_pvc(request: Request, handler: AdmissionHandler = Depends(get_admission_handler)) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.PERSISTENT_VOLUME_CLAIM)


@router.post("/validate--v1-service", summary="Validate Service admission")
async def validate_service(
    request: Request,
    handler: AdmissionHandler = Depends(get_admission_handler),
) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.SERVICE)


@router.post("/validate--v1-namespace", summary="Validate Namespace admission")
async def validate_namespace(
    request: Request,
    handler: AdmissionHandler = Depends(get_admission_handler),
) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.NAMESPACE)


@router.post(
    "/validate-quota-powerapp-cloud-v1alpha1-clusterresourcequota",
    summary="Validate ClusterResourceQuota admission",
)
async def validate_cluster_resource_quota(
    request: Request,
    handler: AdmissionHandler = Depends(get_admission_handler),
) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.CLUSTER_RESOURCE_QUOTA)


@router.post("/validate-objectcount", summary="Validate object-count tracked kinds")
async def validate_object_count(
    request: Request,
    handler: AdmissionHandler = Depends(get_admission_handler),
) -> JSONResponse:
    return await _review(request, handler, AdmissionKind.OBJECT_COUNT)


@router.post("/validate", summary="Validate any supported kind")
async def validate_any(request: Request, handler: AdmissionHandler = Depends(get_admission_handler)) -> JSONResponse:
    return await _review(request, handler, None)
