"""Company endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status

from leadflow.api.errors import to_http_exception
from leadflow.models.company import Company, CompanyCreate, CompanyUpdate
from leadflow.services.pipeline.directory import LeadDirectory, get_lead_directory
from leadflow.services.pipeline.errors import PipelineError

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/companies", response_model=list[Company])
async def list_companies(
    name: str | None = Query(None, description="Case-insensitive name fragment."),
    size_bucket: str | None = Query(None),
    directory: LeadDirectory = Depends(get_lead_directory),
) -> list[Company]:
    try:
        return await directory.list_companies(name=name, size_bucket=size_bucket)
    except PipelineError as exc:
        raise to_http_exception(exc, "companies.api_error") from exc


@router.post("/companies", response_model=Company, status_code=status.HTTP_201_CREATED)
async def create_company(
    payload: CompanyCreate,
    directory: LeadDirectory = Depends(get_lead_directory),
) -> Company:
    """Create a company; a lead for it is seeded at the first stage."""
    try:
        return await directory.create_company(payload)
    except PipelineError as exc:
        raise to_http_exception(exc, "companies.api_error") from exc


@router.put("/companies/{company_id}", response_model=Company)
async def update_company(
    company_id: str,
    payload: CompanyUpdate,
    directory: LeadDirectory = Depends(get_lead_directory),
) -> Company:
    try:
        return await directory.update_company(company_id, payload)
    except PipelineError as exc:
        raise to_http_exception(exc, "companies.api_error", company_id=company_id) from exc


@router.delete("/companies/{company_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_company(
    company_id: str, directory: LeadDirectory = Depends(get_lead_directory)
) -> None:
    try:
        await directory.delete_company(company_id)
    except PipelineError as exc:
        raise to_http_exception(exc, "companies.api_error", company_id=company_id) from exc
