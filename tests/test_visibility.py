import pytest

from fieldops.schemas.work_orders import DocumentPermissionIn
from fieldops.services.visibility import effective_visibility, to_visibility_flag


@pytest.mark.parametrize("value", [True, 1, 2, -1, 0.5, "1", "true", "TRUE", " yes ", "on", "visible"])
def test_truthy_values_are_visible(value):
    assert to_visibility_flag(value) is True


@pytest.mark.parametrize("value", [False, 0, 0.0, None, "0", "false", " False ", "no", "off", "", "  "])
def test_falsy_values_are_hidden(value):
    assert to_visibility_flag(value) is False


def test_structured_values_are_rejected():
    with pytest.raises(ValueError):
        to_visibility_flag(["true"])


def test_missing_permission_means_visible():
    assert effective_visibility(None) is True
    assert effective_visibility(False) is False
    assert effective_visibility(True) is True


def test_permission_payload_is_canonicalized():
    assert DocumentPermissionIn(documentId="x", isVisibleToTechnician=0).is_visible_to_technician is False
    assert DocumentPermissionIn(documentId="x", isVisibleToTechnician="1").is_visible_to_technician is True
    assert DocumentPermissionIn(document_id="x").is_visible_to_technician is False
    assert DocumentPermissionIn(documentId="x", isVisibleToTechnician=2).is_visible_to_technician is True
    assert DocumentPermissionIn(documentId="x", isVisibleToTechnician="visible").is_visible_to_technician is True
