from __future__ import annotations

import argparse
import logging
import statistics
import time
from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chamfermatch.datasets import load_detection_dataset, load_template_inputs
from chamfermatch.io import load_grayscale
from chamfermatch.matching import ChamferMatcher, DetectionOptions, MatchingType, RejectionType, SearchStrategy
from chamfermatch.matching.detections import overlap_ratio


def parse_arguments() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evaluate Chamfer shape matching accuracy and throughput.")
    parser.add_argument(
        "--data-root",
        type=Path,
        default=Path("data/chamfer"),
        help="Root directory containing imgs/, csv/, and model/ folders.",
    )
    parser.add_argument(
        "--csv-name",
        type=str,
        default="result0.csv",
        help="CSV filename that stores ground-truth boxes.",
    )
    parser.add_argument(
        "--templates-csv",
        type=str,
        default="templates.csv",
        help="CSV filename that declares template images and their rectangles.",
    )
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Template data file to load instead of the dataset templates.",
    )
    parser.add_argument(
        "--save-store",
        type=Path,
        default=None,
        help="Write the prepared templates to this template data file.",
    )
    parser.add_argument(
        "--canny-threshold",
        type=float,
        default=50.0,
        help="Lower Canny threshold; the upper one is three times larger.",
    )
    parser.add_argument(
        "--matching-type",
        type=str,
        choices=[item.value for item in MatchingType],
        default=MatchingType.EDGE.value,
        help="Cost function used to score template placements.",
    )
    parser.add_argument(
        "--strategy",
        type=str,
        choices=[item.value for item in SearchStrategy],
        default=SearchStrategy.TEMPLATE.value,
        help="Slide over the search region or only check the template pose.",
    )
    parser.add_argument(
        "--no-rejection",
        action="store_true",
        help="Disable the grid-descriptor admission filter.",
    )
    parser.add_argument(
        "--multi-scale",
        action="store_true",
        help="Search every scale of the scale range instead of scale 1.0 only.",
    )
    parser.add_argument("--scale-min", type=float, default=0.5, help="Smallest template scale.")
    parser.add_argument("--scale-max", type=float, default=2.0, help="Largest template scale.")
    parser.add_argument("--scale-step", type=float, default=0.1, help="Step between template scales.")
    parser.add_argument(
        "--distance-threshold",
        type=float,
        default=50.0,
        help="Detections must have a cost strictly below this value.",
    )
    parser.add_argument(
        "--orientation-weight",
        type=float,
        default=5.0,
        help="Weight of the orientation error added to the distance cost.",
    )
    parser.add_argument(
        "--no-orientation",
        action="store_true",
        help="Score distances only.",
    )
    parser.add_argument(
        "--group",
        action="store_true",
        help="Merge overlapping detections of the same scale.",
    )
    parser.add_argument(
        "--nms",
        action="store_true",
        help="Drop detections strictly contained in another detection.",
    )
    parser.add_argument(
        "--iou-threshold",
        type=float,
        default=0.5,
        help="Minimum IoU between the top detection and the ground truth to count a hit.",
    )
    parser.add_argument("--workers", type=int, default=1, help="Threads used to fill cost maps.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def evaluate() -> None:
    args = parse_arguments()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    dataset = load_detection_dataset(
        root=args.data_root,
        csv_name=args.csv_name,
        templates_csv=args.templates_csv,
    )

    matcher = ChamferMatcher(
        canny_threshold=args.canny_threshold,
        matching_type=args.matching_type,
        strategy=args.strategy,
        rejection=RejectionType.NONE if args.no_rejection else RejectionType.GRID_DESCRIPTOR,
        scale_min=args.scale_min,
        scale_max=args.scale_max,
        scale_step=args.scale_step,
        workers=args.workers,
    )
    if args.store is not None:
        matcher.load(args.store)
    else:
        images, regions = load_template_inputs(dataset)
        matcher.set_templates(images, regions)
    if args.save_store is not None:
        matcher.save(args.save_store)

    options = DetectionOptions(
        use_orientation=not args.no_orientation,
        distance_threshold=args.distance_threshold,
        orientation_weight=args.orientation_weight,
        group_detections=args.group,
        non_maxima_suppression=args.nms,
    )
    detect = matcher.detect_multi_scale if args.multi_scale else matcher.detect

    overlaps: list[float] = []
    hits = 0
    id_hits = 0
    durations_ms: list[float] = []

    for record in dataset.records:
        image = load_grayscale(record.image_path)

        start = time.perf_counter()
        detections = detect(image, options)
        end = time.perf_counter()
        duration_ms = (end - start) * 1000.0
        durations_ms.append(duration_ms)

        if not detections:
            overlaps.append(0.0)
            print(f"{record.name:35s} | no detection | time={duration_ms:7.2f}ms")
            continue

        best = detections[0]
        overlap = overlap_ratio(best.bounding_box, record.box)
        overlaps.append(overlap)
        id_match = best.template_id == record.template_id
        hits += int(overlap >= args.iou_threshold and id_match)
        id_hits += int(id_match)

        print(
            f"{record.name:35s} | "
            f"cost={best.cost:8.4f} | "
            f"id={best.template_id:3d} (target={record.template_id:3d}) | "
            f"scale={best.scale:4.2f} | "
            f"box={best.bounding_box} target={record.box} | "
            f"iou={overlap:5.3f} | "
            f"count={len(detections):3d} | "
            f"time={duration_ms:7.2f}ms"
        )

    frames = len(dataset.records)
    print("\nSummary")
    print("-" * 72)
    print(f"Frames evaluated : {frames}")
    print(f"Templates        : {len(matcher.template_ids)} ({len(matcher.store.scales())} scales each)")
    print(f"Hit rate         : {hits / frames:.3f} (IoU >= {args.iou_threshold}, matching id)")
    print(f"Id accuracy      : {id_hits / frames:.3f}")
    print(f"IoU              : mean={statistics.fmean(overlaps):.3f}, median={statistics.median(overlaps):.3f}, min={min(overlaps):.3f}")
    print(f"Latency (ms)     : mean={statistics.fmean(durations_ms):.2f}, median={statistics.median(durations_ms):.2f}, min={min(durations_ms):.2f}, max={max(durations_ms):.2f}")


if __name__ == "__main__":
    evaluate()
