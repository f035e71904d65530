#!/usr/bin/env python3
"""
CLI for scenario graphs: import legacy exports, validate, chat and visualize
"""

import argparse
import json
import os
import sys
import logging
from typing import Any, Dict, Optional

# 프로젝트 경로 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from core.config import get_settings
from core.conversation_manager import ConversationManager
from core.runtime.graph_info import load_and_validate
from core.session import FreeTextEvent, SelectBranchEvent, StartEvent
from graph.errors import LegacyImportError
from graph.graph_builder import GraphBuilder
from graph.preprocess import load_json
from graph.schema import Scenario
from loaders.legacy_importer import LegacyImporter
from storage.scenario_store import ScenarioStore
from storage.session_store import SessionStore


def setup_logging(verbose: bool = False):
    """Setup logging configuration"""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )
    logging.getLogger('matplotlib').setLevel(logging.WARNING)


def _load_scenario(path: str, legacy: bool, name: Optional[str] = None) -> Scenario:
    if legacy:
        settings = get_settings()
        importer = LegacyImporter(
            load_json(path),
            name=name or os.path.splitext(os.path.basename(path))[0],
            restart_phrase=settings.restart_phrase,
            start_marker=settings.start_marker,
        )
        return importer.run().scenario
    return load_and_validate(path).scenario


# ========================================
# Subcommands
# ========================================

def cmd_import(args) -> int:
    settings = get_settings()
    existing = None
    if args.update and os.path.exists(args.output):
        existing = Scenario.model_validate(load_json(args.output))

    importer = LegacyImporter(
        load_json(args.export),
        name=args.name or (existing.name if existing else os.path.splitext(os.path.basename(args.export))[0]),
        description=args.description,
        existing=existing,
        max_depth=args.max_depth,
        restart_phrase=settings.restart_phrase,
        start_marker=settings.start_marker,
    )
    result = importer.run()

    builder = GraphBuilder()
    builder.load_scenario(result.scenario)
    ok = builder.build_graph()

    with open(args.output, 'w', encoding='utf-8') as f:
        json.dump(result.scenario.to_wire(), f, ensure_ascii=False, indent=2)

    print(f"✅ Imported {result.imported} nodes into {args.output}")
    for warning in result.warnings:
        print(f"   ⚠️ {warning}")
    if not ok:
        print("❌ Imported scenario does not pass validation:")
        for error in builder.report.errors:
            print(f"   - {error}")
        return 1
    return 0


def cmd_validate(args) -> int:
    print(f"Validating scenario: {args.scenario}")
    builder = GraphBuilder()
    if args.legacy:
        builder.load_scenario(_load_scenario(args.scenario, legacy=True))
    elif not builder.load_from_json(args.scenario):
        print("❌ Scenario file could not be loaded")
        return 1

    ok = builder.build_graph()
    report = builder.report
    for issue in report.issues:
        marker = "❌" if issue.is_error else "⚠️"
        print(f"   {marker} {issue}")

    info = builder.export_graph_info()
    stats = info['graph_stats']
    print(f"   Nodes: {stats['nodes']}  Edges: {stats['edges']}  Jumps: {stats['jumps']}  "
          f"Acyclic: {stats['is_dag']}")
    if ok:
        print("✅ Scenario validation completed successfully!")
        return 0
    print(f"❌ Scenario validation failed with {len(report.errors)} error(s)")
    return 1


def cmd_visualize(args) -> int:
    builder = GraphBuilder()
    if args.legacy:
        builder.load_scenario(_load_scenario(args.scenario, legacy=True))
    elif not builder.load_from_json(args.scenario):
        return 1
    builder.build_graph()
    if builder.visualize_graph(args.output):
        print(f"✅ Graph image saved: {args.output}")
        return 0
    print("⚠️ Graph visualization skipped (matplotlib unavailable)")
    return 1


def print_turn(result: Dict[str, Any], verbose: bool = False):
    data = result.get('data') or {}
    for message in data.get('messages', []):
        if message['kind'] == 'image':
            print(f"챗봇> [image] {message.get('image_url')}")
        elif message.get('text'):
            print(f"챗봇> {message['text']}")

    for i, choice in enumerate(data.get('choices', []), 1):
        suffix = f"  ({choice['url']})" if choice.get('url') else ""
        print(f"   {i}. {choice['label']}{suffix}")

    for effect in data.get('side_effects', []):
        if effect['kind'] == 'open_link':
            print(f"   🔗 {effect['payload'].get('url')}")
        elif effect['kind'] == 'dispatch_action':
            print(f"   ⚙️  action: {effect.get('action')}")

    error = data.get('error')
    if error:
        print(f"   ⚠️ [{error['code']}] {error['message']}")

    if verbose:
        node = data.get('node') or {}
        print(f"   [Debug] Node: {node.get('current')} ({node.get('kind')})")
        print(f"   [Debug] Memory: {(data.get('session') or {}).get('memory')}")


def cmd_chat(args) -> int:
    logger = logging.getLogger(__name__)
    settings = get_settings()
    use_redis = args.redis or settings.use_redis

    try:
        scenario = _load_scenario(args.scenario, legacy=args.legacy)
    except (ValueError, LegacyImportError) as e:
        print(f"❌ {e}")
        return 1

    scenarios = ScenarioStore(use_redis=use_redis, redis_host=settings.redis_host,
                              redis_port=settings.redis_port, redis_db=settings.redis_db)
    saved = scenarios.save_scenario(scenario)
    if not isinstance(saved, Scenario):
        for issue in saved:
            print(f"   ❌ {issue}")
        return 1
    sessions = SessionStore(use_redis=use_redis, redis_host=settings.redis_host,
                            redis_port=settings.redis_port, redis_db=settings.redis_db,
                            session_ttl=settings.session_ttl)
    manager = ConversationManager(scenarios, sessions)

    result = manager.start_session(saved.id, session_id=args.session_id)
    session_id = result['session_id']
    print(f"Starting new session: {session_id}")
    print("\n" + "=" * 60)
    print("   명령어: 'quit' 종료 / 'restart' 처음부터 / 'info' 세션 정보")
    print("   번호를 입력하면 선택지를 고르고, 그 외 입력은 자유 텍스트로 보냅니다")
    print("=" * 60)
    print_turn(result, args.verbose)

    while True:
        try:
            user_input = input("\n 사용자> ").strip()
            if not user_input:
                continue
            if user_input.lower() in ['quit', 'exit', 'q']:
                print("\n 채팅을 종료합니다.")
                break
            if user_input.lower() == 'info':
                info = manager.get_session_info(session_id)
                print(json.dumps((info.get('data') or {}).get('session'), ensure_ascii=False, indent=2))
                continue

            choices = (result.get('data') or {}).get('choices', [])
            if user_input.lower() == 'restart':
                event = StartEvent()
            elif user_input.isdigit() and 1 <= int(user_input) <= len(choices):
                event = SelectBranchEvent(branch_id=choices[int(user_input) - 1]['id'])
            else:
                event = FreeTextEvent(text=user_input)

            result = manager.process_event(session_id, event)
            if result.get('error'):
                print(f"오류: {result['response']}")
                break
            print_turn(result, args.verbose)

            if result.get('handed_off'):
                print("\n상담원에게 연결되었습니다.")
                break
            if result.get('session_complete'):
                print("\n대화 완료 ('restart'로 다시 시작)")

        except KeyboardInterrupt:
            print("\n\n 채팅을 종료합니다.")
            break
        except EOFError:
            print("\n\n입력 종료.")
            break
        except Exception as e:
            logger.error(f"Unexpected error: {e}")
            print(f"예상치 못한 오류가 발생했습니다: {e}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scenario graph tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python cli/scenario_cli.py import export.json -o scenario.json --name "Support"
  python cli/scenario_cli.py validate scenario.json
  python cli/scenario_cli.py chat scenario.json
  python cli/scenario_cli.py chat export.json --legacy
  python cli/scenario_cli.py visualize scenario.json -o scenario.png
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    sub = parser.add_subparsers(dest='command', required=True)

    p_import = sub.add_parser('import', help='Import a legacy flow-chart export')
    p_import.add_argument('export', help='Path to the export JSON ({"cells": [...]})')
    p_import.add_argument('--output', '-o', required=True, help='Where to write the scenario JSON')
    p_import.add_argument('--name', help='Scenario name (default: file name)')
    p_import.add_argument('--description', default='', help='Scenario description')
    p_import.add_argument('--max-depth', type=int, default=None,
                          help='Stop materialising below this depth (default: unlimited)')
    p_import.add_argument('--update', action='store_true',
                          help='Re-import into the existing output file, keeping node ids')
    p_import.set_defaults(func=cmd_import)

    p_validate = sub.add_parser('validate', help='Validate a scenario file')
    p_validate.add_argument('scenario', help='Path to the scenario JSON')
    p_validate.add_argument('--legacy', action='store_true', help='Input is a legacy export')
    p_validate.set_defaults(func=cmd_validate)

    p_chat = sub.add_parser('chat', help='Walk a scenario interactively')
    p_chat.add_argument('scenario', help='Path to the scenario JSON')
    p_chat.add_argument('--legacy', action='store_true', help='Input is a legacy export')
    p_chat.add_argument('--session-id', help='Use specific session ID (default: generate new)')
    p_chat.add_argument('--redis', action='store_true', help='Use Redis for storage (default: in-memory)')
    p_chat.set_defaults(func=cmd_chat)

    p_viz = sub.add_parser('visualize', help='Render the scenario graph to an image')
    p_viz.add_argument('scenario', help='Path to the scenario JSON')
    p_viz.add_argument('--legacy', action='store_true', help='Input is a legacy export')
    p_viz.add_argument('--output', '-o', default='scenario_graph.png', help='Image path')
    p_viz.set_defaults(func=cmd_visualize)
    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        return args.func(args)
    except FileNotFoundError as e:
        print(f"파일을 찾을 수 없습니다: {e}")
        return 1
    except json.JSONDecodeError as e:
        print(f"JSON 파일 형식 오류: {e}")
        return 1
    except LegacyImportError as e:
        print(f"가져오기 실패: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
