# src/mssql_datasource/domain/types.py
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EvidenceType(str, Enum):
    """Portable column types understood by the reporting host"""
    NUMBER = "number"
    DATE = "date"
    STRING = "string"
    BOOLEAN = "boolean"


class TypeFidelity(str, Enum):
    """How much the reported column type can be trusted"""
    PRECISE = "precise"    # Native type maps directly
    INFERRED = "inferred"  # No mapping, defaulted to STRING


@dataclass(frozen=True)
class NativeColumn:
    """A result column as reported by the driver"""
    name: str
    type_name: Optional[str] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: Optional[bool] = None


class ColumnDescriptor(BaseModel):
    """Portable type annotation for one result column"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Column name as returned by the query")
    evidence_type: EvidenceType = Field(..., description="Portable column type")
    type_fidelity: TypeFidelity = Field(..., description="PRECISE when mapped, INFERRED when defaulted")

    def to_host(self) -> Dict[str, Any]:
        """Shape expected by the host: {name, evidenceType, typeFidelity}"""
        return {
            "name": self.name,
            "evidenceType": self.evidence_type.value,
            "typeFidelity": self.type_fidelity.value,
        }
