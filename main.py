from __future__ import annotations

import os
from graph.graph_builder import GraphBuilder


def main() -> None:
    print("=" * 60)
    print("Scenario GraphBuilder demo")
    print("=" * 60)

    base_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(base_dir, 'config', 'sample_scenario.json')
    output_png = os.path.join(base_dir, 'scenario_graph.png')

    builder = GraphBuilder()

    # 시나리오 로드
    if not builder.load_from_json(config_path):
        return

    # 그래프 생성 + 검증
    if not builder.build_graph():
        return

    # 익명 사이클 탐지 (jump 제외)
    cycle_result = builder.detect_cycles()
    print(f"\nTopological order: {cycle_result['order']}")

    # 그래프 정보 출력
    graph_info = builder.export_graph_info()
    print(f"\n총 노드 수: {graph_info['graph_stats']['nodes']}")
    print(f"총 엣지 수: {graph_info['graph_stats']['edges']}")
    print(f"Jump 수: {graph_info['graph_stats']['jumps']}")
    print(f"DAG 여부: {graph_info['graph_stats']['is_dag']}")
    for kind, node_ids in graph_info['kind_groups'].items():
        print(f"   {kind}: {', '.join(node_ids)}")

    # 그래프 시각화
    if builder.visualize_graph(output_png):
        print(f"\n✅ 그래프 시각화 저장 완료: {output_png}")
    else:
        print("\n⚠️ 그래프 시각화 스킵")


if __name__ == "__main__":
    main()
