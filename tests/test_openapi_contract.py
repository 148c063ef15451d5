import json
from pathlib import Path

from stockledger.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_mutating_routes_document_error_envelope():
    paths = app.openapi()["paths"]
    for path, method in [
        ("/sales", "post"),
        ("/inventory/inward", "post"),
        ("/reconciliations", "post"),
        ("/reconciliations/{reconciliation_id}/items/{product_id}", "put"),
        ("/reconciliations/{reconciliation_id}/finalize", "post"),
    ]:
        responses = paths[path][method]["responses"]
        assert "401" in responses
        assert "409" in responses
        schema_ref = responses["409"]["content"]["application/json"]["schema"]["$ref"]
        assert schema_ref.endswith("/ErrorOut")


def test_read_only_stock_routes_need_no_actor():
    paths = app.openapi()["paths"]
    assert "401" not in paths["/stock/validate-availability"]["post"]["responses"]
    assert "404" in paths["/stock/movements/{product_id}"]["get"]["responses"]
    assert "404" in paths["/stock/audit/{product_id}"]["get"]["responses"]
