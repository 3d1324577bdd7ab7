#!/usr/bin/env python3
"""
Grade one essay against a running backend and print the report.

Usage:
  uvicorn essay_grader.main:app --port 8000
  python scripts/grade_essay.py --topic "公共政策执行" \
      --material-file material.txt --text-file answer.txt --word-limit 300

Handwritten answers:
  python scripts/grade_essay.py --material-file material.txt --image page1.jpg --image page2.jpg
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import mimetypes
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from essay_grader.client import GradeClient, GradeClientError


def _read_text(value: Optional[str], path: Optional[str]) -> str:
    if path:
        return Path(path).read_text(encoding="utf-8")
    return value or ""


def _image_ref(value: str) -> str:
    """URLs and data URIs pass through; local files become data URIs."""
    if value.startswith(("http://", "https://", "data:")):
        return value
    p = Path(value)
    if not p.exists():
        raise ValueError(f"file not found: {value}")
    mime = mimetypes.guess_type(p.name)[0] or "image/jpeg"
    b64 = base64.b64encode(p.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{b64}"


def _build_payload(args: argparse.Namespace) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if args.topic:
        payload["topic"] = args.topic
    material = _read_text(args.material, args.material_file)
    if material:
        payload["material"] = material
    if args.material_image:
        payload["materialImages"] = [_image_ref(v) for v in args.material_image]
    text = _read_text(args.text, args.text_file)
    if text:
        payload["text"] = text
    if args.image:
        payload["images"] = [_image_ref(v) for v in args.image]
    if args.word_limit:
        payload["wordLimit"] = args.word_limit
    return payload


def _print_progress(event: Dict[str, Any]) -> None:
    print(f"[{event.get('percent', 0):>3}%] {event.get('stage')}: {event.get('message')}", file=sys.stderr)


def _print_result(result: Dict[str, Any], *, as_json: bool) -> None:
    if as_json:
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return
    report = result.get("reportMarkdown")
    if report:
        print(report)
        return
    # No narrative report: fall back to the structured fields.
    print(f"总分：{result.get('totalScore')}/100")
    for dim in result.get("dimensions") or []:
        print(f"- {dim.get('subject')}：{dim.get('score')}/{dim.get('fullMark')}")
    for c in result.get("comments") or []:
        print(f"[{c.get('type')}] {c.get('title')}：{c.get('content')}")
    if result.get("advice"):
        print(f"建议：{result['advice']}")


async def _run(args: argparse.Namespace) -> int:
    try:
        payload = _build_payload(args)
    except (OSError, ValueError) as e:
        print(f"bad input: {e}", file=sys.stderr)
        return 1

    client = GradeClient(args.api_base)
    try:
        if args.no_stream:
            result = await client.grade_once(payload)
        else:
            result = await client.grade(payload, on_progress=_print_progress)
    except GradeClientError as e:
        print(f"grading failed (status={e.status}): {e.message}", file=sys.stderr)
        if e.details:
            print(json.dumps(e.details, ensure_ascii=False, indent=2), file=sys.stderr)
        return 1
    _print_result(result, as_json=args.json)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Grade an essay via the essay grader API")
    parser.add_argument(
        "--api-base",
        default=os.getenv("ESSAY_GRADER_API_BASE", "http://127.0.0.1:8000/api/v1"),
    )
    parser.add_argument("--topic")
    parser.add_argument("--material", help="material text")
    parser.add_argument("--material-file")
    parser.add_argument("--material-image", action="append", help="URL, data URI or local file")
    parser.add_argument("--text", help="answer text")
    parser.add_argument("--text-file")
    parser.add_argument("--image", action="append", help="answer image: URL, data URI or local file")
    parser.add_argument("--word-limit", type=int)
    parser.add_argument("--no-stream", action="store_true", help="use the single-shot endpoint")
    parser.add_argument("--json", action="store_true", help="print the raw result JSON")
    args = parser.parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
