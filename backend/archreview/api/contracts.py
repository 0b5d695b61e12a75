from pydantic import BaseModel, ConfigDict, Field

from archreview.model_config import ApiConfig


class ModelActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(default="", alias="modelId", max_length=120)
    action: str = Field(default="", max_length=40)


class CustomModelCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(default="", alias="modelId", max_length=120)
    name: str = Field(default="", max_length=160)
    description: str = Field(default="", max_length=2000)
    provider: str = Field(default="", max_length=120)
    api_config: ApiConfig | None = Field(default=None, alias="apiConfig")


class ReviewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    professions: list[str] = Field(..., min_length=1, max_length=20)
    report_summary: str = Field(..., alias="reportSummary", min_length=1, max_length=60000)
    model_id: str | None = Field(default=None, alias="modelId", max_length=120)
