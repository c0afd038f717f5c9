"""Request and response models for the HTTP API."""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class AnalyzeRequest(BaseModel):
    url: str = Field(default="", max_length=2000)


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: str


class RetryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)


class RetryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    job_id: str = Field(alias="jobId")
    language: str
    language_code: str = Field(alias="languageCode")
    trust_score: int = Field(alias="trustScore")


class JobHealthAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["mark_failed"]
    job_ids: List[str] = Field(alias="jobIds", min_length=1)


class JobHealthActionResponse(BaseModel):
    success: bool
    updated: int
    message: Optional[str] = None
