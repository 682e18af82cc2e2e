"""Pipeline pre-deploy hook that re-checks the sourceguard verdict."""

from __future__ import annotations

import json
import os
import tempfile
import zipfile

import boto3


FAILURE_GUIDE_URL = os.environ.get(
    "GUIDE_URL",
    "https://cheatsheetseries.owasp.org/cheatsheets/Secure_Code_Review_Cheat_Sheet.html",
)
REPORT_PATH = os.environ.get("SOURCEGUARD_REPORT", "artifacts/sourceguard.json")

ORDER = ["critical", "high", "medium", "low"]


def _extract_artifact(job_data: dict, target_path: str) -> dict:
    credentials = job_data["artifactCredentials"]
    session = boto3.Session(
        aws_access_key_id=credentials["accessKeyId"],
        aws_secret_access_key=credentials["secretAccessKey"],
        aws_session_token=credentials["sessionToken"],
        region_name=os.environ.get("AWS_REGION"),
    )
    s3_client = session.client("s3")

    artifact = job_data["inputArtifacts"][0]
    bucket = artifact["location"]["s3Location"]["bucketName"]
    key = artifact["location"]["s3Location"]["objectKey"]

    with tempfile.NamedTemporaryFile() as tmp_file:
        s3_client.download_file(bucket, key, tmp_file.name)
        with zipfile.ZipFile(tmp_file.name) as zipped:
            with zipped.open(target_path) as scan_file:
                return json.loads(scan_file.read().decode("utf-8"))


def _unwrap(document: dict) -> dict:
    """Accept the plain report or the ``--envelope`` form."""

    if "report" in document and "envelope" in document:
        return document["report"]
    return document


def _top_findings(report: dict, limit: int = 10) -> list[str]:
    findings = report.get("findings", [])
    ordered = sorted(
        findings,
        key=lambda item: ORDER.index(item.get("severity")) if item.get("severity") in ORDER else len(ORDER),
    )
    highlights = []
    for item in ordered[:limit]:
        highlights.append(
            f"[{str(item.get('severity')).upper()}] {item.get('rule_id')} {item.get('path')}:{item.get('line')}"
            f" x{item.get('count', 1)} - {item.get('message')}"
        )
    return highlights


def build_message(report: dict) -> str:
    highlights = _top_findings(report)
    message_lines = [
        "Sourceguard verification (pre-deploy hook)",
        f"Verdict: {report.get('verdict')}",
        f"Summary: {report.get('summary', {})}",
    ]
    if report.get("partial"):
        message_lines.append("Partial: scan budget exhausted before every file was scanned")
    if highlights:
        message_lines.append("Highlights:")
        message_lines.extend(highlights)
    message_lines.append(f"Remediation: {FAILURE_GUIDE_URL}")
    return "\n".join(message_lines)


def handler(event, _context):
    job = event["CodePipeline.job"]
    job_id = job["id"]
    data = job["data"]

    client = boto3.client("codepipeline")

    try:
        report = _unwrap(_extract_artifact(data, REPORT_PATH))
    except Exception as exc:  # pylint: disable=broad-except
        client.put_job_failure_result(
            jobId=job_id,
            failureDetails={
                "type": "JobFailed",
                "message": f"Failed to read {REPORT_PATH}: {exc}",
            },
        )
        return

    if report.get("verdict") != "pass":
        client.put_job_failure_result(
            jobId=job_id,
            failureDetails={
                "type": "JobFailed",
                "message": build_message(report),
            },
        )
        return

    client.put_job_success_result(jobId=job_id, executionDetails={"summary": "Sourceguard re-validation successful"})
