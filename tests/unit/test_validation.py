import pytest

from relpop.validation import RelationshipValidator
from relpop_common.errors import RelationshipValidationError


@pytest.fixture()
def validator(registry, store):
    return RelationshipValidator(registry, store)


async def _errors(validator, data, collection="posts"):
    with pytest.raises(RelationshipValidationError) as ei:
        await validator.validate(collection, data)
    return ei.value.errors


@pytest.mark.asyncio
async def test_valid_references_pass(validator):
    await validator.validate("posts", {
        "title": "ok",
        "relationField": "rel-1",
        "filteredRelation": "rel-filtered",
        "customIdNumberRelation": "42",
        "related": [{"relationTo": "custom-id", "value": "custom-abc123"}],
        "tags": ["rel-1"],
        "relationField_unknown": "ignored",
    })
    await validator.validate("posts", {"relationField": None, "tags": None})


@pytest.mark.asyncio
async def test_filtered_out_relation_is_rejected(validator):
    errors = await _errors(validator, {"filteredRelation": "rel-disabled"})
    assert errors == [{
        "field": "filteredRelation",
        "message": "'rel-disabled' is not a valid option for filteredRelation",
        "value": "rel-disabled",
        "relation_to": "relation",
    }]


@pytest.mark.asyncio
async def test_every_bad_value_is_reported(validator):
    errors = await _errors(validator, {
        "relationField": "missing",
        "customIdNumberRelation": "abc",
        "tags": "rel-1",
        "related": [{"relationTo": "relation", "value": "rel-1"}, {"relationTo": "posts", "value": "post-1"}],
        "meta": {"author": "nobody"},
        "blocks": [{"ref": "chain-1"}, {"ref": "chain-9"}],
    })
    assert [e["field"] for e in errors] == [
        "relationField",
        "customIdNumberRelation",
        "related.1",
        "tags",
        "meta.author",
        "blocks.1.ref",
    ]


@pytest.mark.asyncio
async def test_access_rules_do_not_apply_to_existence_checks(validator):
    # strict-access is closed to anonymous reads, but the reference itself is valid
    await validator.validate("posts", {"defaultAccessRelation": "strict-1"})


def test_error_envelope_lists_errors():
    exc = RelationshipValidationError("posts", [{"field": "a", "message": "m", "value": 1}])
    assert str(exc) == "Invalid relationship value(s) in 'posts': a"
    assert exc.to_error() == {
        "error": {
            "code": "validation_error",
            "message": "Invalid relationship value(s) in 'posts': a",
            "details": {"errors": [{"field": "a", "message": "m", "value": 1}]},
        }
    }
