"""Example usage of CommutePlanner."""

import logging
import sys
from pathlib import Path

# Add src to path so we can import commutetrack
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from commutetrack import CommutePlanner, StationNotFoundError

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def print_routes(origin: str, destination: str, target: str = "9:30 AM"):
    """
    Plan a commute and display the routes with their alerts.

    Args:
        origin: Station name (e.g., "Carroll St")
        destination: Station name (e.g., "23rd St")
        target: Desired arrival time
    """
    print(f"\n{'='*70}")
    print(f"Routes from {origin} to {destination} (arrive by {target})")
    print(f"{'='*70}\n")

    planner = CommutePlanner()
    try:
        routes = planner.calculate_routes(origin, destination, target)
        if not routes:
            print("No routes available")
            return

        for route in routes:
            flag = "" if route.is_real_time_data else f"  [{route.warning}]"
            on_time = "" if route.arrives_by_target is None else (" on time" if route.arrives_by_target else " LATE")
            print(
                f"{' → '.join(route.lines)}: {route.total_time_minutes} min, "
                f"arrive {route.arrival_time:%H:%M}{on_time}, "
                f"{route.transfer_count} transfer(s), confidence {route.confidence}%{flag}"
            )
            for step in route.steps:
                print(f"    {step.type.value:8s} {step.duration:3d} min  {step.description}")
            for alert in route.alerts:
                print(f"    ! [{alert.severity.value}] {alert.header_text}")
            print()

        print("=" * 70)
        print(f"NEXT DEPARTURES FROM {origin.upper()}:")
        for line, departures in planner.get_departures(origin, 1).items():
            if departures:
                times = ", ".join(d.relative_time for d in departures)
                print(f"  {line} ({departures[0].direction_label}): {times}")
            else:
                print(f"  {line}: no trains")

        print("=" * 70)
        print("CACHE:")
        stats = planner.get_performance_stats()
        print(f"  hit rate {stats['hit_rate']}%, {stats['total_requests']} requests, "
              f"{stats['duplicates_avoided']} duplicates avoided")
        print("=" * 70 + "\n")

    except StationNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Failed to plan commute: {e}", exc_info=True)
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        planner.close()


if __name__ == "__main__":
    if len(sys.argv) >= 3:
        print_routes(*sys.argv[1:4])
    else:
        print_routes("Carroll St", "23rd St")
