"""
Native SQL Server column types to portable host types.

Type names are the SQL Server system type names (int, nvarchar, datetime2...),
compared case-insensitively. Anything not in the table, including binary,
uniqueidentifier, time, spatial, sql_variant and table-valued types, is
reported as STRING with INFERRED fidelity.
"""

from typing import Iterable, List, Mapping, Optional, Union

from mssql_datasource.domain.types import (
    ColumnDescriptor,
    EvidenceType,
    NativeColumn,
    TypeFidelity,
)


NATIVE_TYPE_MAP = {
    # Integer, approximate, decimal and money families
    "int": EvidenceType.NUMBER,
    "tinyint": EvidenceType.NUMBER,
    "bigint": EvidenceType.NUMBER,
    "smallint": EvidenceType.NUMBER,
    "float": EvidenceType.NUMBER,
    "real": EvidenceType.NUMBER,
    "decimal": EvidenceType.NUMBER,
    "numeric": EvidenceType.NUMBER,
    "smallmoney": EvidenceType.NUMBER,
    "money": EvidenceType.NUMBER,

    # Date/time families (time alone is not a date)
    "datetime": EvidenceType.DATE,
    "smalldatetime": EvidenceType.DATE,
    "datetimeoffset": EvidenceType.DATE,
    "date": EvidenceType.DATE,
    "datetime2": EvidenceType.DATE,

    # Character, text and xml families
    "varchar": EvidenceType.STRING,
    "nvarchar": EvidenceType.STRING,
    "char": EvidenceType.STRING,
    "nchar": EvidenceType.STRING,
    "xml": EvidenceType.STRING,
    "text": EvidenceType.STRING,
    "ntext": EvidenceType.STRING,

    "bit": EvidenceType.BOOLEAN,
}


def native_type_to_evidence_type(
    type_name: Optional[str],
    default: Optional[EvidenceType] = None
) -> Optional[EvidenceType]:
    """
    Look up a native type name.

    Args:
        type_name: SQL Server type name, optionally with a size suffix ("nvarchar(50)")
        default: Returned when the type is not in the table

    Returns:
        The portable type, or `default`
    """
    if not type_name:
        return default
    base_name = type_name.split("(", 1)[0].strip().lower()
    return NATIVE_TYPE_MAP.get(base_name, default)


def describe_column(column: NativeColumn) -> ColumnDescriptor:
    evidence_type = native_type_to_evidence_type(column.type_name)
    if evidence_type is None:
        return ColumnDescriptor(
            name=column.name,
            evidence_type=EvidenceType.STRING,
            type_fidelity=TypeFidelity.INFERRED,
        )
    return ColumnDescriptor(
        name=column.name,
        evidence_type=evidence_type,
        type_fidelity=TypeFidelity.PRECISE,
    )


def map_column_types(
    columns: Union[Iterable[NativeColumn], Mapping[str, Optional[str]]]
) -> List[ColumnDescriptor]:
    """
    Map driver column metadata to ColumnDescriptors, preserving order.

    Accepts either NativeColumn objects or an ordered mapping of
    column name -> native type name.
    """
    if isinstance(columns, Mapping):
        columns = [NativeColumn(name=name, type_name=type_name) for name, type_name in columns.items()]
    return [describe_column(column) for column in columns]
