import uuid
from typing import Optional, List, Literal, Union, Annotated
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


# =========================
# Enums
# =========================
class UserRole(str, Enum):
    WORKSPACE_ADMIN = "workspace_admin"
    DATA_ADMIN = "data_admin"
    QUERIER = "querier"
    VIEWER = "viewer"


class DeployMode(str, Enum):
    DEPLOY = "deploy"
    VALIDATE = "validate"


# =========================
# DEPLOY REQUEST
# =========================
class ColumnDefinition(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    semantic_type: Optional[str] = None
    expr: Optional[str] = None
    type: Optional[str] = None
    agg: Optional[str] = None
    stored_values: bool = False


class EntityRelationship(BaseModel):
    name: str
    expr: str
    type: str


class DeployDatasetRequest(BaseModel):
    """
    One declared dataset.
    `schema` is exposed under its wire name but stored as schema_name,
    BaseModel already owns `schema`.
    """

    id: Optional[uuid.UUID] = None
    data_source_name: str
    env: str = "dev"
    type: str = "view"
    name: str = Field(min_length=1)
    model: Optional[str] = None
    schema_name: str = Field(alias="schema")
    database: Optional[str] = None
    description: str = ""
    sql_definition: Optional[str] = None
    entity_relationships: Optional[List[EntityRelationship]] = None
    columns: List[ColumnDefinition] = []
    yml_file: Optional[str] = None
    database_identifier: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


# =========================
# VALIDATION ERRORS
# =========================
class DataSourceError(BaseModel):
    error_type: Literal["data_source_error"] = "data_source_error"
    message: str


class TableNotFoundError(BaseModel):
    error_type: Literal["table_not_found"] = "table_not_found"
    qualified_name: str
    message: str = ""

    def model_post_init(self, __context) -> None:
        if not self.message:
            self.message = f"Table '{self.qualified_name}' not found in data source"


class ColumnNotFoundError(BaseModel):
    error_type: Literal["column_not_found"] = "column_not_found"
    column_name: str
    message: str = ""

    def model_post_init(self, __context) -> None:
        if not self.message:
            self.message = f"Column '{self.column_name}' not found in table"


ValidationError = Annotated[
    Union[DataSourceError, TableNotFoundError, ColumnNotFoundError],
    Field(discriminator="error_type"),
]


# =========================
# DEPLOY RESPONSE
# =========================
class ValidationResult(BaseModel):
    name: str
    data_source_name: str
    schema_name: str = Field(alias="schema")
    success: bool = False
    errors: List[ValidationError] = []
    dataset_id: Optional[uuid.UUID] = None

    model_config = ConfigDict(populate_by_name=True)

    def add_error(self, error) -> None:
        self.errors.append(error)
        self.success = False


class DeploymentSuccess(BaseModel):
    model_name: str
    data_source_name: str
    schema_name: str = Field(alias="schema")

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class DeploymentFailure(BaseModel):
    model_name: str
    data_source_name: str
    schema_name: str = Field(alias="schema")
    errors: List[ValidationError]

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class DeploymentSummary(BaseModel):
    total_models: int
    successful_models: int
    failed_models: int
    successes: List[DeploymentSuccess] = []
    failures: List[DeploymentFailure] = []


class DeployDatasetsResponse(BaseModel):
    results: List[ValidationResult]
    summary: DeploymentSummary


# =========================
# DATASET PERMISSIONS
# =========================
class DatasetAssignment(BaseModel):
    dataset_id: uuid.UUID = Field(validation_alias=AliasChoices("dataset_id", "id"))
    assigned: bool
