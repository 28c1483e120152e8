from fastapi import FastAPI
from fastapi.testclient import TestClient

from stepforge.api.dependencies import register_exception_handlers
from stepforge.exceptions import MaterializationException, NotFoundException


def _client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/missing")
    def missing():
        raise NotFoundException("release not found: 7", details={"kind": "release", "id": 7})

    @app.get("/broken")
    def broken():
        raise MaterializationException("Failed to write out.ts")

    return TestClient(app)


def test_unhandled_not_found():
    """ルーターで処理されなかった例外もステータスとエラー情報に変換される"""
    response = _client().get("/missing")
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {
            "error_code": 2002,
            "error_name": "NOT_FOUND_ERROR",
            "message": "release not found: 7",
            "details": {"kind": "release", "id": 7},
        },
    }


def test_unhandled_generation_error():
    response = _client().get("/broken")
    assert response.status_code == 500
    assert response.json()["error"]["error_name"] == "MATERIALIZATION_ERROR"
