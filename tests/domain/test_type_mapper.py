"""
Unit tests for the native type -> evidence type mapping.

Tests verify:
- Every mapped SQL Server type family
- Unmapped types default to STRING with INFERRED fidelity
- Case and size suffix handling
- Column order is preserved
"""

import pytest

from mssql_datasource.domain.type_mapper import (
    map_column_types,
    native_type_to_evidence_type,
)
from mssql_datasource.domain.types import (
    ColumnDescriptor,
    EvidenceType,
    NativeColumn,
    TypeFidelity,
)


class TestNativeTypeLookup:
    """Test the lookup table."""

    @pytest.mark.parametrize("type_name", [
        "int", "tinyint", "bigint", "smallint", "float", "real",
        "decimal", "numeric", "smallmoney", "money",
    ])
    def test_numeric_types(self, type_name):
        assert native_type_to_evidence_type(type_name) == EvidenceType.NUMBER

    @pytest.mark.parametrize("type_name", [
        "datetime", "smalldatetime", "datetimeoffset", "date", "datetime2",
    ])
    def test_date_types(self, type_name):
        assert native_type_to_evidence_type(type_name) == EvidenceType.DATE

    @pytest.mark.parametrize("type_name", [
        "varchar", "nvarchar", "char", "nchar", "xml", "text", "ntext",
    ])
    def test_string_types(self, type_name):
        assert native_type_to_evidence_type(type_name) == EvidenceType.STRING

    def test_bit_is_boolean(self):
        assert native_type_to_evidence_type("bit") == EvidenceType.BOOLEAN

    def test_time_is_not_a_date(self):
        """time has no date part and is not mapped."""
        assert native_type_to_evidence_type("time") is None

    def test_lookup_ignores_case_and_size(self):
        assert native_type_to_evidence_type("NVarChar(50)") == EvidenceType.STRING
        assert native_type_to_evidence_type("DECIMAL(18, 2)") == EvidenceType.NUMBER

    def test_unknown_type_returns_default(self):
        assert native_type_to_evidence_type("geography") is None
        assert native_type_to_evidence_type("geography", EvidenceType.STRING) == EvidenceType.STRING

    def test_missing_type_returns_default(self):
        assert native_type_to_evidence_type(None) is None


class TestMapColumnTypes:
    """Test conversion of driver metadata to ColumnDescriptors."""

    def test_mapped_columns_are_precise(self):
        result = map_column_types([NativeColumn(name="amount", type_name="money")])

        assert result == [ColumnDescriptor(
            name="amount",
            evidence_type=EvidenceType.NUMBER,
            type_fidelity=TypeFidelity.PRECISE,
        )]

    @pytest.mark.parametrize("type_name", ["varbinary", "uniqueidentifier", "sql_variant", None])
    def test_unmapped_columns_are_inferred_strings(self, type_name):
        result = map_column_types([NativeColumn(name="blob", type_name=type_name)])

        assert result[0].evidence_type == EvidenceType.STRING
        assert result[0].type_fidelity == TypeFidelity.INFERRED

    def test_order_is_preserved(self, sample_columns):
        result = map_column_types(sample_columns)

        assert [c.name for c in result] == ["id", "created_at", "customer", "active", "row_guid"]
        assert [c.evidence_type for c in result] == [
            EvidenceType.NUMBER,
            EvidenceType.DATE,
            EvidenceType.STRING,
            EvidenceType.BOOLEAN,
            EvidenceType.STRING,
        ]

    def test_accepts_name_to_type_mapping(self):
        result = map_column_types({"a": "bigint", "b": "hierarchyid"})

        assert [(c.name, c.type_fidelity) for c in result] == [
            ("a", TypeFidelity.PRECISE),
            ("b", TypeFidelity.INFERRED),
        ]

    def test_empty_input(self):
        assert map_column_types([]) == []

    def test_host_shape(self):
        descriptor = map_column_types([NativeColumn(name="flag", type_name="bit")])[0]

        assert descriptor.to_host() == {
            "name": "flag",
            "evidenceType": "boolean",
            "typeFidelity": "precise",
        }
