"""Thin boto3 facade exposing the remote calls the reconcilers need.

Every botocore error is translated into the engine's error taxonomy; "not
found" responses surface as ``None``. Paginated listings are bounded by
``max_listing_pages`` and raise ``ListingOverflowError`` past that limit.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .errors import ListingOverflowError, ProviderError
from .ownership import tag_set_from_tags, tags_from_tag_set
from .settings import DEFAULT_MAX_LISTING_PAGES, DEFAULT_REGION
from .types import FileEntry, FunctionConfig, RemoteResourceState

LOGGER = logging.getLogger(__name__)

ACM_KEY_TYPES = [
    "RSA_1024",
    "RSA_2048",
    "RSA_3072",
    "RSA_4096",
    "EC_prime256v1",
    "EC_secp384r1",
    "EC_secp521r1",
]


@contextmanager
def provider_errors(resource: str | None = None) -> Iterator[None]:
    """Translate botocore failures into ``ProviderError``."""
    try:
        yield
    except ClientError as exc:
        error = exc.response.get("Error", {})
        raise ProviderError(
            str(error.get("Code") or "Unknown"),
            str(error.get("Message") or exc),
            resource=resource,
        ) from exc
    except BotoCoreError as exc:
        raise ProviderError(type(exc).__name__, str(exc), resource=resource) from exc


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class AwsFacade:
    """Thin wrapper around boto3 to simplify testing."""

    def __init__(self, session=None, *, region: str | None = None, max_listing_pages: int = DEFAULT_MAX_LISTING_PAGES):  # type: ignore[no-untyped-def]
        self._session = session or boto3.Session(region_name=region)
        self._region = region or self._session.region_name or DEFAULT_REGION
        self._max_pages = max_listing_pages
        self._clients: dict[tuple[str, str], Any] = {}

    def _client(self, service: str, region: str | None = None):  # type: ignore[no-untyped-def]
        key = (service, region or self._region)
        if key not in self._clients:
            self._clients[key] = self._session.client(service, region_name=key[1])
        return self._clients[key]

    def _overflow(self, what: str, resource: str | None) -> ListingOverflowError:
        return ListingOverflowError(
            f"Whoa, you have a lot of {what}! Unfortunately, this tool cannot list them all.",
            resource=resource,
        )

    # === IAM ===

    def get_role_arn(self, role_name: str) -> str | None:
        iam = self._client("iam")
        try:
            response = iam.get_role(RoleName=role_name)
        except ClientError as exc:
            if error_code(exc) == "NoSuchEntity":
                return None
            with provider_errors(role_name):
                raise
        return response["Role"]["Arn"]

    def create_role(
        self,
        role_name: str,
        *,
        assume_role_policy: Mapping[str, Any],
        policy_name: str,
        policy: Mapping[str, Any],
        tags: Mapping[str, str],
    ) -> str:
        iam = self._client("iam")
        with provider_errors(role_name):
            response = iam.create_role(
                RoleName=role_name,
                AssumeRolePolicyDocument=json.dumps(assume_role_policy, indent=2),
                Tags=tag_set_from_tags(tags),
            )
            iam.put_role_policy(
                RoleName=role_name,
                PolicyName=policy_name,
                PolicyDocument=json.dumps(policy, indent=2),
            )
        return response["Role"]["Arn"]

    # === Lambda ===

    def get_function(self, name: str) -> RemoteResourceState | None:
        client = self._client("lambda")
        try:
            response = client.get_function(FunctionName=name)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return None
            with provider_errors(name):
                raise
        config = response.get("Configuration", {})
        role_arn = config.get("Role", "")
        return RemoteResourceState(
            identifier=config.get("FunctionArn", ""),
            name=name,
            tags=dict(response.get("Tags") or {}),
            attributes={
                "arn": config.get("FunctionArn", ""),
                "runtime": config.get("Runtime"),
                "handler": config.get("Handler"),
                "role_arn": role_arn,
                "execution_role": role_arn.split("/")[-1] if role_arn else None,
                "memory_size": config.get("MemorySize"),
                "timeout_seconds": config.get("Timeout"),
                "environment": dict((config.get("Environment") or {}).get("Variables") or {}),
                "reserved_concurrency": (response.get("Concurrency") or {}).get("ReservedConcurrentExecutions"),
                "code_sha256": config.get("CodeSha256"),
                "state": config.get("State"),
                "last_update_status": config.get("LastUpdateStatus"),
            },
        )

    def create_function(
        self,
        name: str,
        *,
        config: FunctionConfig,
        role_arn: str,
        archive: bytes,
        tags: Mapping[str, str],
    ) -> str:
        client = self._client("lambda")
        with provider_errors(name):
            response = client.create_function(
                FunctionName=name,
                Runtime=config.runtime,
                Role=role_arn,
                Handler=config.handler,
                MemorySize=config.memory_size,
                Timeout=config.timeout_seconds,
                Environment={"Variables": dict(config.environment)},
                Code={"ZipFile": archive},
                Tags=dict(tags),
            )
        return response["FunctionArn"]

    def update_function_configuration(self, name: str, *, config: FunctionConfig, role_arn: str) -> None:
        client = self._client("lambda")
        with provider_errors(name):
            client.update_function_configuration(
                FunctionName=name,
                Runtime=config.runtime,
                Role=role_arn,
                Handler=config.handler,
                MemorySize=config.memory_size,
                Timeout=config.timeout_seconds,
                Environment={"Variables": dict(config.environment)},
            )

    def update_function_code(self, name: str, archive: bytes) -> None:
        client = self._client("lambda")
        with provider_errors(name):
            client.update_function_code(FunctionName=name, ZipFile=archive)

    def set_function_concurrency(self, name: str, reserved: int | None) -> None:
        client = self._client("lambda")
        with provider_errors(name):
            if reserved is None:
                client.delete_function_concurrency(FunctionName=name)
            else:
                client.put_function_concurrency(FunctionName=name, ReservedConcurrentExecutions=reserved)

    def get_function_status(self, name: str) -> tuple[str | None, str | None, str | None]:
        """Return ``(State, LastUpdateStatus, reason)`` of the function."""
        client = self._client("lambda")
        with provider_errors(name):
            config = client.get_function_configuration(FunctionName=name)
        reason = config.get("LastUpdateStatusReason") or config.get("StateReason")
        return config.get("State"), config.get("LastUpdateStatus"), reason

    def add_permission(self, function_arn: str, *, statement_id: str, principal: str, source_arn: str) -> bool:
        """Grant ``principal`` the right to invoke the function; False when already granted."""
        client = self._client("lambda")
        try:
            client.add_permission(
                FunctionName=function_arn,
                StatementId=statement_id,
                Action="lambda:InvokeFunction",
                Principal=principal,
                SourceArn=source_arn,
            )
        except ClientError as exc:
            if error_code(exc) == "ResourceConflictException":
                return False
            with provider_errors(function_arn):
                raise
        return True

    def remove_permission(self, function_arn: str, *, statement_id: str) -> None:
        client = self._client("lambda")
        try:
            client.remove_permission(FunctionName=function_arn, StatementId=statement_id)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return
            with provider_errors(function_arn):
                raise

    # === EventBridge ===

    def list_rule_names_by_target(self, target_arn: str) -> list[str]:
        events = self._client("events")
        names: list[str] = []
        kwargs: dict[str, Any] = {"TargetArn": target_arn}
        with provider_errors(target_arn):
            for _ in range(self._max_pages):
                response = events.list_rule_names_by_target(**kwargs)
                names.extend(response.get("RuleNames", []))
                token = response.get("NextToken")
                if not token:
                    return names
                kwargs["NextToken"] = token
        raise self._overflow("EventBridge rules", target_arn)

    def describe_rule(self, name: str) -> RemoteResourceState | None:
        events = self._client("events")
        try:
            rule = events.describe_rule(Name=name)
        except ClientError as exc:
            if error_code(exc) == "ResourceNotFoundException":
                return None
            with provider_errors(name):
                raise
        with provider_errors(name):
            tags = events.list_tags_for_resource(ResourceARN=rule["Arn"]).get("Tags", [])
        pattern = rule.get("EventPattern")
        if pattern:
            pattern = json.dumps(json.loads(pattern), sort_keys=True, separators=(",", ":"))
        return RemoteResourceState(
            identifier=rule["Arn"],
            name=name,
            tags=tags_from_tag_set(tags),
            attributes={
                "arn": rule["Arn"],
                "schedule": rule.get("ScheduleExpression"),
                "pattern": pattern,
                "state": rule.get("State"),
            },
        )

    def put_rule(
        self,
        name: str,
        *,
        schedule: str | None,
        pattern: str | None,
        description: str,
        tags: Mapping[str, str] | None = None,
    ) -> str:
        events = self._client("events")
        kwargs: dict[str, Any] = {"Name": name, "State": "ENABLED", "Description": description}
        if schedule:
            kwargs["ScheduleExpression"] = schedule
        if pattern:
            kwargs["EventPattern"] = pattern
        if tags:
            kwargs["Tags"] = tag_set_from_tags(tags)
        with provider_errors(name):
            return events.put_rule(**kwargs)["RuleArn"]

    def put_rule_target(self, rule: str, *, target_id: str, arn: str, payload: Mapping[str, Any]) -> None:
        events = self._client("events")
        with provider_errors(rule):
            response = events.put_targets(
                Rule=rule,
                Targets=[{"Id": target_id, "Arn": arn, "Input": json.dumps(dict(payload))}],
            )
        if response.get("FailedEntryCount"):
            entry = (response.get("FailedEntries") or [{}])[0]
            raise ProviderError(
                entry.get("ErrorCode", "FailedEntry"),
                entry.get("ErrorMessage", "Unable to attach the rule target"),
                resource=rule,
            )

    def list_rule_targets(self, rule: str) -> list[dict[str, Any]]:
        """Targets of ``rule`` as ``{"id", "arn", "payload"}`` with the input decoded."""
        events = self._client("events")
        with provider_errors(rule):
            targets = events.list_targets_by_rule(Rule=rule).get("Targets", [])
        result = []
        for target in targets:
            try:
                payload = json.loads(target["Input"]) if target.get("Input") else None
            except json.JSONDecodeError:
                payload = None
            result.append({"id": target["Id"], "arn": target["Arn"], "payload": payload})
        return result

    def delete_rule(self, name: str) -> None:
        events = self._client("events")
        with provider_errors(name):
            targets = events.list_targets_by_rule(Rule=name).get("Targets", [])
            if targets:
                events.remove_targets(Rule=name, Ids=[target["Id"] for target in targets])
            events.delete_rule(Name=name)

    # === S3 ===

    def get_bucket_tags(self, bucket: str) -> dict[str, str] | None:
        """Tags of the bucket, ``{}`` when untagged and ``None`` when it does not exist."""
        s3 = self._client("s3")
        try:
            response = s3.get_bucket_tagging(Bucket=bucket)
        except ClientError as exc:
            code = error_code(exc)
            if code == "NoSuchTagSet":
                return {}
            if code in ("NoSuchBucket", "404"):
                return None
            with provider_errors(bucket):
                raise
        return tags_from_tag_set(response.get("TagSet"))

    def get_bucket_region(self, bucket: str) -> str:
        s3 = self._client("s3")
        with provider_errors(bucket):
            response = s3.get_bucket_location(Bucket=bucket)
        location = response.get("LocationConstraint")
        if location == "EU":
            return "eu-west-1"
        return location or "us-east-1"

    def get_bucket_index_page(self, bucket: str) -> str | None:
        s3 = self._client("s3")
        try:
            response = s3.get_bucket_website(Bucket=bucket)
        except ClientError as exc:
            if error_code(exc) == "NoSuchWebsiteConfiguration":
                return None
            with provider_errors(bucket):
                raise
        return (response.get("IndexDocument") or {}).get("Suffix")

    def create_bucket(self, bucket: str, *, region: str, tags: Mapping[str, str]) -> None:
        s3 = self._client("s3", region)
        params: dict[str, Any] = {"Bucket": bucket}
        if region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        with provider_errors(bucket):
            s3.create_bucket(**params)
            s3.get_waiter("bucket_exists").wait(Bucket=bucket)
            s3.put_bucket_tagging(Bucket=bucket, Tagging={"TagSet": tag_set_from_tags(tags)})

    def configure_bucket_website(self, bucket: str, *, index_page: str, policy: Mapping[str, Any] | None = None) -> None:
        """Set the website index document and, when given, open the bucket with ``policy``."""
        s3 = self._client("s3")
        with provider_errors(bucket):
            if policy is not None:
                s3.put_public_access_block(
                    Bucket=bucket,
                    PublicAccessBlockConfiguration={
                        "BlockPublicAcls": True,
                        "IgnorePublicAcls": True,
                        "BlockPublicPolicy": False,
                        "RestrictPublicBuckets": False,
                    },
                )
                s3.put_bucket_policy(Bucket=bucket, Policy=json.dumps(policy))
            s3.put_bucket_website(
                Bucket=bucket,
                WebsiteConfiguration={"IndexDocument": {"Suffix": index_page}},
            )

    def list_objects(self, bucket: str) -> list[FileEntry]:
        s3 = self._client("s3")
        entries: list[FileEntry] = []
        kwargs: dict[str, Any] = {"Bucket": bucket}
        with provider_errors(bucket):
            for _ in range(self._max_pages):
                response = s3.list_objects_v2(**kwargs)
                for item in response.get("Contents", []):
                    entries.append(
                        FileEntry(path=item["Key"], size=int(item.get("Size", 0)), md5=item.get("ETag", "").strip('"'))
                    )
                token = response.get("NextContinuationToken")
                if not token:
                    return entries
                kwargs["ContinuationToken"] = token
        raise self._overflow("files in the S3 bucket", bucket)

    def get_json_object(self, bucket: str, key: str) -> Mapping[str, Any] | None:
        s3 = self._client("s3")
        try:
            response = s3.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            if error_code(exc) in ("NoSuchKey", "404"):
                return None
            with provider_errors(bucket):
                raise
        try:
            return json.loads(response["Body"].read())
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring malformed JSON object %s in %s", key, bucket)
            return None

    def put_object(
        self,
        bucket: str,
        key: str,
        *,
        body: bytes,
        content_type: str,
        content_md5: str,
        cache_control: str | None = None,
    ) -> None:
        s3 = self._client("s3")
        params: dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "ContentMD5": content_md5,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        with provider_errors(bucket):
            s3.put_object(**params)

    def delete_object(self, bucket: str, key: str) -> None:
        s3 = self._client("s3")
        with provider_errors(bucket):
            s3.delete_object(Bucket=bucket, Key=key)

    # === CloudFront ===

    def find_distribution(self, alias: str) -> RemoteResourceState | None:
        cloudfront = self._client("cloudfront")
        kwargs: dict[str, Any] = {}
        with provider_errors(alias):
            for _ in range(self._max_pages):
                listing = cloudfront.list_distributions(**kwargs).get("DistributionList", {})
                for summary in listing.get("Items", []) or []:
                    if alias in (summary.get("Aliases", {}).get("Items") or []):
                        return self._distribution_state(summary["Id"], summary["ARN"], alias)
                if not listing.get("IsTruncated"):
                    return None
                kwargs["Marker"] = listing.get("NextMarker")
        raise self._overflow("CloudFront distributions", alias)

    def _distribution_state(self, distribution_id: str, arn: str, alias: str) -> RemoteResourceState:
        cloudfront = self._client("cloudfront")
        with provider_errors(alias):
            distribution = cloudfront.get_distribution(Id=distribution_id)["Distribution"]
            tags = cloudfront.list_tags_for_resource(Resource=arn).get("Tags", {}).get("Items", [])
        return RemoteResourceState(
            identifier=arn,
            name=alias,
            tags=tags_from_tag_set(tags),
            attributes=distribution_attributes(distribution),
        )

    def create_distribution(self, config: Mapping[str, Any], *, tags: Mapping[str, str], alias: str) -> RemoteResourceState:
        cloudfront = self._client("cloudfront")
        with provider_errors(alias):
            distribution = cloudfront.create_distribution_with_tags(
                DistributionConfigWithTags={
                    "DistributionConfig": dict(config),
                    "Tags": {"Items": tag_set_from_tags(tags)},
                }
            )["Distribution"]
        return RemoteResourceState(
            identifier=distribution["ARN"],
            name=alias,
            tags=dict(tags),
            attributes=distribution_attributes(distribution),
        )

    def get_distribution_config(self, distribution_id: str) -> tuple[dict[str, Any], str]:
        cloudfront = self._client("cloudfront")
        with provider_errors(distribution_id):
            response = cloudfront.get_distribution_config(Id=distribution_id)
        return dict(response["DistributionConfig"]), response["ETag"]

    def update_distribution(self, distribution_id: str, *, etag: str, config: Mapping[str, Any]) -> None:
        cloudfront = self._client("cloudfront")
        with provider_errors(distribution_id):
            cloudfront.update_distribution(Id=distribution_id, IfMatch=etag, DistributionConfig=dict(config))

    def get_distribution_status(self, distribution_id: str) -> str | None:
        cloudfront = self._client("cloudfront")
        with provider_errors(distribution_id):
            return cloudfront.get_distribution(Id=distribution_id)["Distribution"].get("Status")

    def create_invalidation(self, distribution_id: str, paths: Sequence[str], *, reference: str) -> str:
        cloudfront = self._client("cloudfront")
        with provider_errors(distribution_id):
            response = cloudfront.create_invalidation(
                DistributionId=distribution_id,
                InvalidationBatch={
                    "CallerReference": reference,
                    "Paths": {"Quantity": len(paths), "Items": list(paths)},
                },
            )
        return response["Invalidation"]["Id"]

    def get_invalidation_status(self, distribution_id: str, invalidation_id: str) -> str | None:
        cloudfront = self._client("cloudfront")
        with provider_errors(distribution_id):
            response = cloudfront.get_invalidation(DistributionId=distribution_id, Id=invalidation_id)
        return response["Invalidation"].get("Status")

    # === Route 53 ===

    def find_hosted_zone(self, domain_name: str) -> dict[str, str] | None:
        """Hosted zone whose name is the longest suffix of ``domain_name``.

        Listing starts at the registrable domain. Route 53 orders zones by
        reversed labels, so every zone under that domain is listed before the
        first zone outside of it, which ends the search.
        """
        route53 = self._client("route53")
        fqdn = domain_name.rstrip(".").lower() + "."
        base = ".".join(fqdn.rstrip(".").split(".")[-2:])
        kwargs: dict[str, Any] = {"DNSName": base}
        best: dict[str, Any] | None = None
        with provider_errors(domain_name):
            for _ in range(self._max_pages):
                response = route53.list_hosted_zones_by_name(**kwargs)
                zones = response.get("HostedZones", [])
                for zone in zones:
                    name = zone["Name"].lower()
                    if fqdn == name or fqdn.endswith("." + name):
                        if best is None or len(name) > len(best["Name"]):
                            best = zone
                if not response.get("IsTruncated") or not zones or not _within(zones[-1]["Name"], base):
                    break
                kwargs = {"DNSName": response["NextDNSName"], "HostedZoneId": response["NextHostedZoneId"]}
            else:
                raise self._overflow("Route 53 hosted zones", domain_name)
        if best is None:
            return None
        return {"id": best["Id"].split("/")[-1], "name": best["Name"].rstrip(".")}

    def find_record_set(self, zone_id: str, name: str, record_type: str) -> dict[str, Any] | None:
        """Record set ``name``/``record_type``; the listing is anchored at the record."""
        route53 = self._client("route53")
        fqdn = name.rstrip(".") + "."
        with provider_errors(name):
            response = route53.list_resource_record_sets(
                HostedZoneId=zone_id,
                StartRecordName=fqdn,
                StartRecordType=record_type,
            )
        for record in response.get("ResourceRecordSets", []):
            if record.get("Name", "").lower() == fqdn.lower() and record.get("Type") == record_type:
                return record
        return None

    def upsert_record_set(self, zone_id: str, record_set: Mapping[str, Any]) -> str:
        route53 = self._client("route53")
        with provider_errors(record_set.get("Name")):
            response = route53.change_resource_record_sets(
                HostedZoneId=zone_id,
                ChangeBatch={"Changes": [{"Action": "UPSERT", "ResourceRecordSet": dict(record_set)}]},
            )
        return response["ChangeInfo"]["Id"]

    def get_change_status(self, change_id: str) -> str | None:
        route53 = self._client("route53")
        with provider_errors(change_id):
            return route53.get_change(Id=change_id)["ChangeInfo"].get("Status")

    # === ACM ===

    def list_certificates(self, *, region: str | None = None) -> list[dict[str, Any]]:
        acm = self._client("acm", region)
        summaries: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "CertificateStatuses": ["ISSUED", "PENDING_VALIDATION"],
            "Includes": {"keyTypes": ACM_KEY_TYPES},
            "MaxItems": 1000,
        }
        with provider_errors():
            for _ in range(self._max_pages):
                response = acm.list_certificates(**kwargs)
                summaries.extend(response.get("CertificateSummaryList", []))
                token = response.get("NextToken")
                if not token:
                    return summaries
                kwargs["NextToken"] = token
        raise self._overflow("ACM certificates", None)

    def describe_certificate(self, arn: str, *, region: str | None = None) -> dict[str, Any]:
        acm = self._client("acm", region)
        with provider_errors(arn):
            return acm.describe_certificate(CertificateArn=arn)["Certificate"]

    def get_certificate_tags(self, arn: str, *, region: str | None = None) -> dict[str, str]:
        acm = self._client("acm", region)
        with provider_errors(arn):
            return tags_from_tag_set(acm.list_tags_for_certificate(CertificateArn=arn).get("Tags"))

    def request_certificate(self, domain_name: str, *, tags: Mapping[str, str], region: str | None = None) -> str:
        acm = self._client("acm", region)
        with provider_errors(domain_name):
            response = acm.request_certificate(
                DomainName=domain_name,
                ValidationMethod="DNS",
                Tags=tag_set_from_tags(tags),
            )
        return response["CertificateArn"]

    # === API Gateway v2 ===

    def find_api(self, name: str) -> RemoteResourceState | None:
        gateway = self._client("apigatewayv2")
        kwargs: dict[str, Any] = {}
        with provider_errors(name):
            for _ in range(self._max_pages):
                response = gateway.get_apis(**kwargs)
                for item in response.get("Items", []):
                    if item.get("Name") == name:
                        return self._api_state(item)
                token = response.get("NextToken")
                if not token:
                    return None
                kwargs["NextToken"] = token
        raise self._overflow("API Gateways", name)

    def _api_state(self, item: Mapping[str, Any]) -> RemoteResourceState:
        return RemoteResourceState(
            identifier=item["ApiId"],
            name=item.get("Name", ""),
            tags=dict(item.get("Tags") or {}),
            attributes={
                "id": item["ApiId"],
                "endpoint": item.get("ApiEndpoint"),
                "cors": normalize_cors(item.get("CorsConfiguration")),
            },
        )

    def create_api(self, name: str, *, target_arn: str, cors: Mapping[str, Any], tags: Mapping[str, str]) -> RemoteResourceState:
        gateway = self._client("apigatewayv2")
        with provider_errors(name):
            response = gateway.create_api(
                Name=name,
                ProtocolType="HTTP",
                Target=target_arn,
                CorsConfiguration=_cors_payload(cors),
                Tags=dict(tags),
            )
        return self._api_state({**response, "Tags": dict(tags)})

    def update_api(self, api_id: str, *, name: str, cors: Mapping[str, Any]) -> None:
        gateway = self._client("apigatewayv2")
        with provider_errors(name):
            gateway.update_api(ApiId=api_id, Name=name, CorsConfiguration=_cors_payload(cors))

    def get_integration(self, api_id: str) -> tuple[str, str] | None:
        """``(IntegrationId, IntegrationUri)`` of the API's first integration."""
        gateway = self._client("apigatewayv2")
        with provider_errors(api_id):
            items = gateway.get_integrations(ApiId=api_id).get("Items", [])
        if not items:
            return None
        return items[0]["IntegrationId"], items[0].get("IntegrationUri", "")

    def update_integration(self, api_id: str, integration_id: str, *, target_arn: str) -> None:
        gateway = self._client("apigatewayv2")
        with provider_errors(api_id):
            gateway.update_integration(ApiId=api_id, IntegrationId=integration_id, IntegrationUri=target_arn)

    def get_domain_name(self, domain_name: str) -> RemoteResourceState | None:
        gateway = self._client("apigatewayv2")
        try:
            response = gateway.get_domain_name(DomainName=domain_name)
        except ClientError as exc:
            if error_code(exc) == "NotFoundException":
                return None
            with provider_errors(domain_name):
                raise
        return _domain_state(response)

    def create_domain_name(self, domain_name: str, *, certificate_arn: str, tags: Mapping[str, str]) -> RemoteResourceState:
        gateway = self._client("apigatewayv2")
        with provider_errors(domain_name):
            response = gateway.create_domain_name(
                DomainName=domain_name,
                DomainNameConfigurations=[
                    {"CertificateArn": certificate_arn, "EndpointType": "REGIONAL", "SecurityPolicy": "TLS_1_2"}
                ],
                Tags=dict(tags),
            )
        return _domain_state({**response, "Tags": dict(tags)})

    def update_domain_name(self, domain_name: str, *, certificate_arn: str) -> None:
        gateway = self._client("apigatewayv2")
        with provider_errors(domain_name):
            gateway.update_domain_name(
                DomainName=domain_name,
                DomainNameConfigurations=[
                    {"CertificateArn": certificate_arn, "EndpointType": "REGIONAL", "SecurityPolicy": "TLS_1_2"}
                ],
            )

    def get_api_mappings(self, domain_name: str) -> list[dict[str, str]]:
        gateway = self._client("apigatewayv2")
        with provider_errors(domain_name):
            items = gateway.get_api_mappings(DomainName=domain_name).get("Items", [])
        return [{"id": item["ApiMappingId"], "api_id": item["ApiId"], "stage": item.get("Stage", "")} for item in items]

    def put_api_mapping(self, domain_name: str, *, api_id: str, mapping_id: str | None = None) -> None:
        gateway = self._client("apigatewayv2")
        with provider_errors(domain_name):
            if mapping_id is None:
                gateway.create_api_mapping(ApiId=api_id, DomainName=domain_name, Stage="$default")
            else:
                gateway.update_api_mapping(ApiId=api_id, ApiMappingId=mapping_id, DomainName=domain_name, Stage="$default")


def distribution_attributes(distribution: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten a CloudFront ``Distribution`` into the attributes compared on update."""
    config = distribution.get("DistributionConfig") or {}
    behavior = config.get("DefaultCacheBehavior") or {}
    errors = (config.get("CustomErrorResponses") or {}).get("Items") or []
    return {
        "id": distribution.get("Id"),
        "arn": distribution.get("ARN"),
        "domain_name": distribution.get("DomainName"),
        "status": distribution.get("Status"),
        "enabled": config.get("Enabled"),
        "price_class": config.get("PriceClass"),
        "default_root_object": config.get("DefaultRootObject"),
        "certificate_arn": (config.get("ViewerCertificate") or {}).get("ACMCertificateArn"),
        "origin_domain_name": _first_origin_domain(config),
        "viewer_protocol_policy": behavior.get("ViewerProtocolPolicy"),
        "cache_ttls": (behavior.get("MinTTL"), behavior.get("DefaultTTL"), behavior.get("MaxTTL")),
        "error_responses": sorted(
            (int(item["ErrorCode"]), str(item.get("ResponseCode", "")), item.get("ResponsePagePath", ""))
            for item in errors
        ),
    }


def _within(zone_name: str, base: str) -> bool:
    name = zone_name.rstrip(".").lower()
    return name == base or name.endswith("." + base)

def _first_origin_domain(config: Mapping[str, Any]) -> str | None:
    items = (config.get("Origins") or {}).get("Items") or []
    return items[0].get("DomainName") if items else None


def _cors_payload(cors: Mapping[str, Any]) -> dict[str, Any]:
    return {key: list(value) if isinstance(value, (list, tuple)) else value for key, value in cors.items()}


def normalize_cors(cors: Mapping[str, Any] | None) -> dict[str, Any]:
    if not cors:
        return {}
    return {
        key: sorted(str(item) for item in value) if isinstance(value, (list, tuple)) else value
        for key, value in cors.items()
    }


def _domain_state(response: Mapping[str, Any]) -> RemoteResourceState:
    configurations = response.get("DomainNameConfigurations") or [{}]
    first = configurations[0]
    return RemoteResourceState(
        identifier=response["DomainName"],
        name=response["DomainName"],
        tags=dict(response.get("Tags") or {}),
        attributes={
            "target_domain_name": first.get("ApiGatewayDomainName"),
            "hosted_zone_id": first.get("HostedZoneId"),
            "certificate_arn": first.get("CertificateArn"),
            "status": first.get("DomainNameStatus"),
        },
    )


__all__ = ["AwsFacade", "distribution_attributes", "error_code", "normalize_cors", "provider_errors"]
