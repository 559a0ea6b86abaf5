"""Tests for the local entry point and JSON logging."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from aws_mock import MockAwsContext

from sg2pl.main import JsonFormatter, main

REGION = "us-east-1"

BINDING_DATA = {
    "securityGroupId": "sg-0123456789abcdef0",
    "securityGroupRegion": REGION,
    "prefixListId": "pl-0123456789abcdef0",
    "prefixListRegion": REGION,
}


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def _record(self, **extra: object) -> logging.LogRecord:
        record = logging.LogRecord(
            name="sg2pl.reconciler",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Reconciliation completed with %s",
            args=("warnings",),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_core_fields(self) -> None:
        data = json.loads(JsonFormatter().format(self._record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "sg2pl.reconciler"
        assert data["message"] == "Reconciliation completed with warnings"
        assert data["timestamp"].endswith("Z")

    def test_extra_fields_included(self) -> None:
        data = json.loads(
            JsonFormatter().format(self._record(binding_key="k", added=2, warnings=["x"]))
        )

        assert data["binding_key"] == "k"
        assert data["added"] == 2
        assert data["warnings"] == ["x"]
        assert "pathname" not in data

    def test_request_id_renamed(self) -> None:
        data = json.loads(JsonFormatter().format(self._record(aws_request_id="req-9")))

        assert data["request_id"] == "req-9"
        assert "aws_request_id" not in data

    def test_non_serializable_values(self) -> None:
        data = json.loads(JsonFormatter().format(self._record(path=Path("/tmp/x"))))
        assert data["path"] == "/tmp/x"

    def test_exception_included(self) -> None:
        try:
            raise ValueError("bad")
        except ValueError:
            record = self._record()
            record.exc_info = sys.exc_info()

        data = json.loads(JsonFormatter().format(record))

        assert "ValueError: bad" in data["exception"]


class TestMain:
    """Tests for the sg2pl-sync entry point."""

    @pytest.fixture(autouse=True)
    def _environment(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        for name in ("LOG_SNS_ARN", "PARAMETER_STORE_PATH", "MAX_SYNC_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("BINDINGS_DIR", str(tmp_path))
        monkeypatch.setenv("REGISTRY_REGION", REGION)
        monkeypatch.setenv("RETRY_BACKOFF_BASE_SECONDS", "0")
        monkeypatch.setenv("RETRY_BACKOFF_MAX_SECONDS", "0")
        (tmp_path / "bindings.yaml").write_text(yaml.safe_dump({"bindings": [BINDING_DATA]}))

    @pytest.mark.asyncio
    async def test_successful_run(self) -> None:
        with MockAwsContext() as ctx, patch("sg2pl.main.setup_logging"):
            ctx.state.add_security_group(REGION, BINDING_DATA["securityGroupId"])
            ctx.state.add_interface(REGION, BINDING_DATA["securityGroupId"], ["10.0.1.5"])
            ctx.state.add_prefix_list(REGION, BINDING_DATA["prefixListId"], 100)
            ctx.state.set_quota(REGION, "vpc", "L-0EA8095F", 60)

            exit_code = await main()

            assert exit_code == 0
            assert set(ctx.state.entries(REGION, BINDING_DATA["prefixListId"])) == {
                "10.0.1.5/32"
            }

    @pytest.mark.asyncio
    async def test_failed_binding_exit_code(self) -> None:
        with MockAwsContext(), patch("sg2pl.main.setup_logging"):
            exit_code = await main()

        assert exit_code == 1

    @pytest.mark.asyncio
    async def test_configuration_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_SYNC_ATTEMPTS", "0")

        with patch("sg2pl.main.setup_logging"):
            exit_code = await main()

        assert exit_code == 1
