"""EventBridge rules invoking a function's declared background jobs."""
from __future__ import annotations

import logging
import time

from .engine import DeployContext, combine_actions, step_result
from .naming import trigger_rule_name
from .types import (
    BACKGROUND_TRIGGERS_STAGE,
    CREATED,
    FUNCTION_STAGE,
    UNCHANGED,
    UPDATED,
    BackgroundJob,
    FunctionConfig,
    ReconciliationResult,
)

LOGGER = logging.getLogger(__name__)

EVENTS_PRINCIPAL = "events.amazonaws.com"
TARGET_ID = "background-job"


def job_payload(job: BackgroundJob) -> dict[str, dict[str, str]]:
    """Event delivered to the function when the rule fires."""
    return {"backgroundJob": {"path": job.path}}


def _targets_function(targets: list[dict], function_arn: str, job: BackgroundJob) -> bool:
    return any(
        target["id"] == TARGET_ID and target["arn"] == function_arn and target["payload"] == job_payload(job)
        for target in targets
    )


def _attach(context: DeployContext, function_arn: str, rule_name: str, rule_arn: str, job: BackgroundJob) -> None:
    """Point the rule at the function and let EventBridge invoke it."""
    client = context.client
    client.put_rule_target(rule_name, target_id=TARGET_ID, arn=function_arn, payload=job_payload(job))
    context.retry(
        lambda: client.add_permission(
            function_arn, statement_id=rule_name, principal=EVENTS_PRINCIPAL, source_arn=rule_arn
        ),
        description=f"Allowing {rule_name} to invoke the function",
        resource=rule_name,
    )


def _register(context: DeployContext, function_arn: str, rule_name: str, job: BackgroundJob) -> str:
    client = context.client
    state = client.describe_rule(rule_name)
    if state is None:
        LOGGER.info("Creating the %s rule %s for %s", job.trigger_kind, rule_name, job.path)
        rule_arn = client.put_rule(
            rule_name,
            schedule=job.schedule,
            pattern=job.pattern,
            description=f"Background job {job.path}",
            tags=context.ownership.creation_tags(),
        )
        _attach(context, function_arn, rule_name, rule_arn, job)
        return CREATED

    if state.attributes.get("schedule") == job.schedule and state.attributes.get("pattern") == job.pattern:
        if _targets_function(client.list_rule_targets(rule_name), function_arn, job):
            return UNCHANGED
        context.ownership.ensure_owned(state, kind="EventBridge rule", resource=rule_name)
        LOGGER.info("Reattaching %s to the rule %s", job.path, rule_name)
        _attach(context, function_arn, rule_name, state.identifier, job)
        return UPDATED

    context.ownership.ensure_owned(state, kind="EventBridge rule", resource=rule_name)
    LOGGER.info("Updating the %s rule %s for %s", job.trigger_kind, rule_name, job.path)
    client.put_rule(rule_name, schedule=job.schedule, pattern=job.pattern, description=f"Background job {job.path}")
    client.put_rule_target(rule_name, target_id=TARGET_ID, arn=function_arn, payload=job_payload(job))
    return UPDATED


def _remove_stale(context: DeployContext, function_arn: str, expected: set[str]) -> list[str]:
    client = context.client
    removed = []
    for name in client.list_rule_names_by_target(function_arn):
        if name in expected:
            continue
        state = client.describe_rule(name)
        if state is None:
            continue
        if not context.ownership.is_owned(state.tags):
            LOGGER.warning("Leaving the rule %s in place: it targets %s but is not managed by this tool", name, function_arn)
            continue
        LOGGER.info("Removing the undeclared rule %s", name)
        client.remove_permission(function_arn, statement_id=name)
        client.delete_rule(name)
        removed.append(name)
    return removed


def register_triggers(config: FunctionConfig, context: DeployContext) -> ReconciliationResult:
    """Converge the function's trigger rules onto ``config.background_jobs``."""
    started = time.perf_counter()
    function = context.require(FUNCTION_STAGE, needed_by=BACKGROUND_TRIGGERS_STAGE, resource=config.function_name)
    function_arn = function.identifier

    rules = {trigger_rule_name(config.function_name, job.path): job for job in config.background_jobs}
    actions = {name: _register(context, function_arn, name, job) for name, job in rules.items()}
    removed = _remove_stale(context, function_arn, set(rules))

    return step_result(
        resource=config.function_name,
        kind=BACKGROUND_TRIGGERS_STAGE,
        action=combine_actions(list(actions.values()) + ([UPDATED] if removed else [])),
        identifier=function_arn,
        started=started,
        attributes={"rules": actions, "removed": removed},
    )


__all__ = ["job_payload", "register_triggers"]
