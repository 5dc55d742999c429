#!/usr/bin/env python3
"""
Simulator for generating mock shelter detections.

Walks a route, asks the simulated detector for a guess every frame and posts
each candidate to the backend:
- object_type / context / confidence: from SimulatedDetector
- lat/lon: linearly interpolated from route.json (or the fallback when --no-gps)
- observed_at: ISO8601 at capture time
Submissions run on a thread pool so a slow request never delays the next frame.
"""

import argparse
import json
import logging
import math
import os
import sys
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from shelterwatch.detector import SimulatedDetector
from shelterwatch.errors import LocationUnavailable
from shelterwatch.events import Coordinate, EventCandidate
from shelterwatch.normalizer import normalize
from shelterwatch.settings import get_settings, setup_logging

logger = logging.getLogger("simulator")

DEFAULT_CENTER = Coordinate(lat=40.7128, lon=-74.0060)


def load_route(route_path: Path) -> List[Dict[str, float]]:
    """Load route from JSON file."""
    if route_path.exists():
        with open(route_path, "r", encoding="utf-8") as f:
            return json.load(f)
    logger.info("Route file not found at %s, generating default route...", route_path)
    return generate_default_route()


def generate_default_route(center: Coordinate = DEFAULT_CENTER, num_points: int = 100) -> List[Dict[str, float]]:
    """Generate a loop of roughly 1km radius around ``center``."""
    radius = 0.01
    route = []
    for i in range(num_points):
        angle = 2 * math.pi * i / num_points
        lat = center.lat + radius * math.sin(angle)
        lon = center.lon + radius * 1.3 * math.cos(angle)  # Adjust for latitude distortion
        route.append({"lat": lat, "lon": lon})
    return route


def interpolate_position(route: List[Dict[str, float]], progress: float) -> Tuple[float, float]:
    """
    Interpolate position along the route based on progress (0.0 to 1.0).
    """
    if not route:
        return DEFAULT_CENTER.lat, DEFAULT_CENTER.lon

    progress = max(0.0, min(1.0, progress))
    total_segments = len(route) - 1
    if total_segments <= 0:
        return route[0]["lat"], route[0]["lon"]

    exact_position = progress * total_segments
    segment_index = int(exact_position)
    segment_progress = exact_position - segment_index
    if segment_index >= total_segments:
        return route[-1]["lat"], route[-1]["lon"]

    p1 = route[segment_index]
    p2 = route[segment_index + 1]
    lat = p1["lat"] + (p2["lat"] - p1["lat"]) * segment_progress
    lon = p1["lon"] + (p2["lon"] - p1["lon"]) * segment_progress
    return lat, lon


class RouteLocation:
    """Location provider that follows a route as frames advance."""

    def __init__(self, route: List[Dict[str, float]], total_frames: int, gps_enabled: bool = True) -> None:
        self.route = route
        self.total_frames = max(1, total_frames)
        self.gps_enabled = gps_enabled
        self.frame = 0

    def locate(self) -> Coordinate:
        if not self.gps_enabled:
            raise LocationUnavailable("GPS disabled")
        lat, lon = interpolate_position(self.route, self.frame / self.total_frames)
        return Coordinate(lat=round(lat, 6), lon=round(lon, 6))


def candidate_payload(candidate: EventCandidate) -> Dict[str, Any]:
    payload = asdict(candidate)
    payload["observed_at"] = candidate.observed_at.isoformat()
    return payload


def create_session_with_retry() -> requests.Session:
    """Create a requests session with retry logic."""
    session = requests.Session()

    retry_strategy = Retry(
        total=5,
        backoff_factor=1,  # exponential backoff: 1, 2, 4, 8, 16 seconds
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=None,  # retry POST too; the server never partially commits
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)

    return session


def send_event(
    session: requests.Session,
    backend_url: str,
    payload: Dict[str, Any],
) -> Optional[Dict[str, Any]]:
    """Send a candidate to the backend; return the stored record or None."""
    url = f"{backend_url}/events"

    try:
        response = session.post(url, json=payload, timeout=10)
    except requests.exceptions.RequestException as e:
        logger.error("Failed to send detection: %s", e)
        return None
    if response.status_code == 422:
        logger.warning("Detection rejected: %s", response.json().get("detail"))
        return None
    try:
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        logger.error("Failed to send detection: %s", e)
        return None
    return response.json()


def wait_for_backend(backend_url: str, max_retries: int = 30, delay: float = 2.0) -> bool:
    """Wait for backend to be available."""
    logger.info("Waiting for backend at %s...", backend_url)

    for attempt in range(max_retries):
        try:
            response = requests.get(f"{backend_url}/health", timeout=5)
            if response.status_code == 200:
                logger.info("Backend is ready!")
                return True
        except requests.exceptions.RequestException:
            pass

        logger.info("  Attempt %d/%d - Backend not ready, waiting...", attempt + 1, max_retries)
        time.sleep(delay)

    logger.error("Backend did not become available in time.")
    return False


def run_simulation(
    backend_url: str,
    speed: float,
    duration_minutes: float,
    route: List[Dict[str, float]],
    probability: float = 0.3,
    gps_enabled: bool = True,
    fallback: Coordinate = DEFAULT_CENTER,
    workers: int = 4,
) -> Dict[str, int]:
    """Run the simulation and return submission counters."""
    print(f"\n{'='*60}")
    print("Shelter Detection Simulator")
    print(f"{'='*60}")
    print(f"Backend URL: {backend_url}")
    print(f"Speed: {speed}x")
    print(f"Duration: {duration_minutes} minutes")
    print(f"Route points: {len(route)}")
    print(f"GPS: {'on' if gps_enabled else 'off (fallback location)'}")
    print(f"{'='*60}\n")

    session = create_session_with_retry()
    detector = SimulatedDetector(probability=probability)

    # One frame per capture interval of simulated time
    total_frames = int(duration_minutes * 30)
    frame_interval = 2.0 / speed
    locator = RouteLocation(route, total_frames, gps_enabled=gps_enabled)

    futures: List[Future] = []
    with ThreadPoolExecutor(max_workers=workers) as pool:
        for frame in range(total_frames):
            locator.frame = frame
            for guess in detector.detect(frame):
                try:
                    coordinate: Optional[Coordinate] = locator.locate()
                except LocationUnavailable:
                    coordinate = None
                candidate, _overlay = normalize(guess, coordinate, fallback=fallback)
                logger.info(
                    "[Frame %4d] %s in %s at (%.4f, %.4f) confidence=%.2f",
                    frame,
                    guess.object_type,
                    guess.context,
                    candidate.lat,
                    candidate.lon,
                    guess.confidence,
                )
                futures.append(pool.submit(send_event, session, backend_url, candidate_payload(candidate)))

            time.sleep(frame_interval)

            if frame > 0 and frame % 15 == 0:
                done = sum(1 for f in futures if f.done())
                logger.info(
                    "[Progress] Frame %d/%d (%.0f%%) - %d detections sent, %d completed",
                    frame,
                    total_frames,
                    frame / total_frames * 100,
                    len(futures),
                    done,
                )

    recorded = sum(1 for f in futures if f.result() is not None)
    summary = {"frames": total_frames, "sent": len(futures), "recorded": recorded}

    print()
    print(f"{'='*60}")
    print("Simulation Complete!")
    print(f"{'='*60}")
    print(f"Total frames: {total_frames}")
    print(f"Detections sent: {len(futures)}")
    print(f"  - Recorded: {recorded}")
    print(f"  - Failed: {len(futures) - recorded}")
    print(f"{'='*60}")
    return summary


def main():
    parser = argparse.ArgumentParser(description="Shelter Detection Simulator")
    parser.add_argument("--speed", type=float, default=1.0, help="Simulation speed multiplier (default: 1.0)")
    parser.add_argument("--minutes", type=float, default=3.0, help="Simulation duration in minutes (default: 3)")
    parser.add_argument("--route", type=str, default=None, help="Path to route.json file")
    parser.add_argument("--probability", type=float, default=None, help="Detection probability per frame")
    parser.add_argument("--no-gps", action="store_true", help="Simulate an unavailable location fix")

    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings)

    backend_url = os.environ.get("BACKEND_URL", "http://localhost:8000").rstrip("/")

    if not wait_for_backend(backend_url):
        sys.exit(1)

    if args.route:
        route_path = Path(args.route)
    else:
        route_path = Path(__file__).parent / "sample_data" / "route.json"

    route = load_route(route_path)

    try:
        run_simulation(
            backend_url=backend_url,
            speed=args.speed,
            duration_minutes=args.minutes,
            route=route,
            probability=args.probability if args.probability is not None else settings.detection_probability,
            gps_enabled=not args.no_gps,
            fallback=settings.default_location,
        )
    except KeyboardInterrupt:
        print("\nSimulation interrupted by user.")
        sys.exit(0)


if __name__ == "__main__":
    main()
