import pytest

from sirm.domain.duplicates import (
    REGISTER,
    RETURN_LOOKUP,
    DuplicateScope,
    RegisteredUnit,
    assert_no_duplicates,
    check_duplicate,
    find_conflicts,
)
from sirm.domain.errors import DuplicateIdentifierError, ValidationError
from sirm.domain.identity import (
    IMPORT_DELIMITER,
    align_sizes,
    decode_units,
    encode_units,
    normalize_units,
    parse_delimited_ids,
    same_identifier,
    units_from_fields,
)
from sirm.domain.models import UnitIdentity


def test_parse_trims_and_drops_empty_tokens_in_order():
    assert parse_delimited_ids(" A1, ,A2 ,, A3 ") == ["A1", "A2", "A3"]
    assert parse_delimited_ids(None) == []
    assert parse_delimited_ids("X;Y", IMPORT_DELIMITER) == ["X", "Y"]


def test_sizes_are_padded_or_truncated_to_ids():
    assert align_sizes(["a", "b", "c"], "S,M") == ["S", "M", ""]
    assert align_sizes(["a"], "S,M,L") == ["S"]
    assert align_sizes(["a", "b"], None) == ["", ""]


def test_units_keep_id_size_pairing():
    units = units_from_fields("IMEI1;IMEI2", "128GB;", IMPORT_DELIMITER)
    assert units == [UnitIdentity("IMEI1", "128GB"), UnitIdentity("IMEI2", None)]


def test_storage_encoding_keeps_order():
    units = (UnitIdentity("B2", "L"), UnitIdentity("A1"), UnitIdentity("C3", "S"))
    ids, sizes = encode_units(units)
    assert ids == "B2,A1,C3"
    assert sizes == "L,,S"
    assert decode_units(ids, sizes) == units


def test_identifiers_with_delimiters_are_rejected():
    with pytest.raises(ValidationError):
        normalize_units(["A1,A2"])
    with pytest.raises(ValidationError):
        normalize_units([UnitIdentity("A1", "S;M")])
    with pytest.raises(ValidationError):
        normalize_units(["   "])


def test_identifier_comparison_ignores_case_and_whitespace():
    assert same_identifier(" imei-01 ", "IMEI-01")
    assert not same_identifier("IMEI-01", "IMEI-010")


def _scope(**kw):
    return DuplicateScope.build(
        in_form_units=kw.get("form", ()),
        catalog_units=kw.get("catalog", ()),
        historical_sold_ids=kw.get("sold", ()),
    )


def test_conflict_sources_are_reported():
    scope = _scope(
        form=["F1"],
        catalog=[RegisteredUnit(product_id=7, product_name="Phone Y", device_id="A1")],
        sold=["S1"],
    )
    assert check_duplicate("f1", scope).source == "form"
    hit = check_duplicate(" a1 ", scope)
    assert hit.source == "catalog"
    assert hit.product_name == "Phone Y"
    assert "Phone Y" in hit.message()
    assert check_duplicate("S1", scope).source == "sold"
    assert check_duplicate("NEW", scope) is None
    assert check_duplicate("", scope) is None


def test_sold_ids_are_not_conflicts_for_return_lookup():
    scope = _scope(sold=["S1"], catalog=[RegisteredUnit(1, "Phone", "C1")])
    assert check_duplicate("S1", scope, RETURN_LOOKUP) is None
    assert check_duplicate("C1", scope, RETURN_LOOKUP).source == "catalog"
    assert check_duplicate("S1", scope, REGISTER).source == "sold"


def test_batch_detects_repeats_inside_itself():
    conflicts = find_conflicts(["A", "B", "a"], _scope())
    assert [(c.device_id, c.source) for c in conflicts] == [("a", "form")]


def test_assert_no_duplicates_lists_every_offender():
    scope = _scope(catalog=[RegisteredUnit(1, "Phone", "X1"), RegisteredUnit(1, "Phone", "X2")])
    with pytest.raises(DuplicateIdentifierError) as exc:
        assert_no_duplicates(["X1", "OK", "X2"], scope)
    assert exc.value.identifiers == ["X1", "X2"]
