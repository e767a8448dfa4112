"""
Tests for giving_config: loading, checksums, validation and wiring into
the orchestrator.
"""

import dataclasses
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
import yaml

from giving_kernel.domain.payment_methods import FeeType
from giving_kernel.gateway.scripted import ScriptedGateway
from giving_kernel.domain.clock import DeterministicClock

from giving_batch.domain.types import PlanStatus
from giving_batch.orchestrator import GivingOrchestrator
from giving_config import (
    DEFAULT_CONFIG_PATH,
    RecurringPolicyDef,
    RetryPolicyDef,
    compute_checksum,
    get_active_config,
    validate_configuration,
)
from giving_config.loader import load_yaml_file


@pytest.fixture
def write_config(tmp_path):
    """Write a copy of the packaged YAML with ``mutate`` applied to it."""

    def _write(mutate):
        data = load_yaml_file(DEFAULT_CONFIG_PATH)
        mutate(data)
        path = tmp_path / "giving.yaml"
        path.write_text(yaml.safe_dump(data))
        return path

    return _write


class TestPackagedDefaults:
    def test_loads_and_validates(self, config):
        assert config.config_id == "church-giving-default"
        assert config.currency == "GHS"
        assert [m.code for m in config.payment_methods] == ["momo", "bank", "cash"]
        assert config.method("momo").requires_gateway_session
        assert config.method("bank").requires_account_number
        assert config.network_set == frozenset({"MTN", "Vodafone", "AirtelTigo"})
        assert validate_configuration(config).is_valid

    def test_policies(self, config):
        policy = config.retry_policy()

        assert policy.backoff == (
            timedelta(minutes=1),
            timedelta(minutes=5),
            timedelta(minutes=30),
        )
        assert policy.classify("timeout").value == "transient"
        assert policy.classify("insufficient_funds").value == "permanent"
        assert config.gateway.session_window == timedelta(minutes=15)
        assert config.recurring.max_consecutive_failures == 3

    def test_domain_methods_inherit_currency(self, config):
        methods = {m.code: m for m in config.domain_payment_methods()}

        assert methods["cash"].currency == "GHS"
        assert methods["momo"].fee_schedule.fee_type == FeeType.FIXED

    def test_trace_is_logged(self, captured_logs):
        loaded = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "GIVING_CONFIG_TRACE"]
        assert traces[0]["checksum"] == loaded.checksum
        assert traces[0]["payment_method_count"] == 3


class TestChecksum:
    def test_deterministic(self, config):
        assert get_active_config().checksum == config.checksum
        assert compute_checksum(config) == config.checksum
        assert len(config.checksum) == 64

    def test_changes_with_content(self, config, write_config):
        def bump(data):
            data["retry"]["backoff_minutes"] = [2, 10, 60]

        changed = get_active_config(write_config(bump))

        assert changed.checksum != config.checksum


class TestValidation:
    def test_overlapping_reasons(self, config):
        broken = dataclasses.replace(
            config,
            retry=RetryPolicyDef(
                transient_reasons=("timeout",), permanent_reasons=("timeout",)
            ),
        )

        result = validate_configuration(broken)

        assert not result.is_valid
        assert "timeout" in result.errors[0]

    def test_backoff_must_increase(self, config):
        broken = dataclasses.replace(config, retry=RetryPolicyDef(backoff_minutes=(5, 5)))

        assert not validate_configuration(broken).is_valid

    def test_duplicate_method_codes(self, config):
        momo = config.method("momo")
        broken = dataclasses.replace(config, payment_methods=(momo, momo))

        errors = validate_configuration(broken).errors

        assert any("Duplicate payment method code" in e for e in errors)

    def test_min_above_max(self, config):
        cash = dataclasses.replace(config.method("cash"), min_amount=500, max_amount=100)
        broken = dataclasses.replace(config, payment_methods=(cash,))

        assert not validate_configuration(broken).is_valid

    def test_percentage_fee_capped(self, config):
        momo = config.method("momo")
        greedy = dataclasses.replace(
            momo, fee=dataclasses.replace(momo.fee, fee_type="percentage", value=10000)
        )
        broken = dataclasses.replace(config, payment_methods=(greedy,))

        assert not validate_configuration(broken).is_valid

    def test_gateway_methods_need_networks(self, config):
        broken = dataclasses.replace(config, supported_networks=())

        assert not validate_configuration(broken).is_valid

    def test_fixed_fee_at_minimum_is_a_warning(self, config):
        cash = config.method("cash")
        pricey = dataclasses.replace(
            cash, fee=dataclasses.replace(cash.fee, value=cash.min_amount)
        )
        result = validate_configuration(dataclasses.replace(config, payment_methods=(pricey,)))

        assert result.is_valid
        assert result.warnings

    def test_invalid_file_is_refused(self, write_config):
        def bad_currency(data):
            data["currency"] = "CEDI"

        with pytest.raises(ValueError, match="validation failed"):
            get_active_config(write_config(bad_currency))

    def test_missing_required_key(self, write_config):
        def drop_id(data):
            del data["config_id"]

        with pytest.raises(KeyError):
            get_active_config(write_config(drop_id))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestOrchestratorWiring:
    def test_policies_flow_into_services(self, session, config):
        tuned = dataclasses.replace(
            config,
            retry=dataclasses.replace(config.retry, backoff_minutes=(2, 10)),
            recurring=RecurringPolicyDef(max_consecutive_failures=1),
        )
        clock = DeterministicClock(datetime(2024, 1, 1, 9, tzinfo=timezone.utc))
        gateway = ScriptedGateway()
        orch = GivingOrchestrator.from_session(session, gateway, clock=clock, config=tuned)
        orch.seed_payment_methods()
        momo = orch.registry.get_by_code("momo")

        tx = orch.ledger.create(
            uuid4(), momo.id, uuid4(), 1000, phone_number="0241234567", network="MTN"
        )
        orch.ledger.mark_failed(tx.id, "timeout")
        assert tx.next_retry_at == clock.now() + timedelta(minutes=2)

        gateway.script_permanent("insufficient_funds")
        plan = orch.scheduler.create_plan(
            uuid4(),
            momo.id,
            uuid4(),
            1000,
            "weekly",
            clock.now(),
            phone_number="0241234567",
            network="MTN",
        )
        orch.scheduler.run_due()

        assert plan.status == PlanStatus.PAUSED.value
        assert plan.pause_reason == "1 consecutive failed attempts"
