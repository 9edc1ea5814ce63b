"""Built-in static data for the Brooklyn/Manhattan commute corridor.

Station coordinates come from MTA GTFS static data. Schedule run times are
scheduled minutes from the previous stop on the line, in northbound order.
"""

# Static station table: one record per physical stop
STATION_RECORDS = [
    {"id": "F20", "name": "Carroll St", "lines": ["F", "G"], "lat": 40.679371, "lng": -73.995458},
    {"id": "F18", "name": "23rd St", "lines": ["F", "M"], "lat": 40.742878, "lng": -73.992821},
    {"id": "F25", "name": "Jay St-MetroTech", "lines": ["F"], "lat": 40.692338, "lng": -73.987342},
    {"id": "A41", "name": "Jay St-MetroTech", "lines": ["A", "C"], "lat": 40.692338, "lng": -73.987342},
    {"id": "A23", "name": "23rd St-8th Ave", "lines": ["C", "E"], "lat": 40.742878, "lng": -73.996324},
    {"id": "A27", "name": "14th St-8th Ave", "lines": ["A", "C", "E"], "lat": 40.740893, "lng": -73.996864},
    {
        "id": "A32",
        "name": "W 4th St-Washington Sq",
        "lines": ["A", "B", "C", "D", "E", "F", "M"],
        "lat": 40.732338,
        "lng": -74.000495,
        "feed_ids": {"B": "D20", "D": "D20", "F": "D20", "M": "D20"},
    },
    {
        "id": "R16",
        "name": "Union Sq-14th St",
        "lines": ["4", "5", "6", "L", "N", "Q", "R", "W"],
        "lat": 40.735736,
        "lng": -73.990568,
    },
    {"id": "R20", "name": "23rd St", "lines": ["N", "Q", "R", "W"], "lat": 40.742878, "lng": -73.989568},
    {"id": "A25", "name": "42nd St-Port Authority", "lines": ["A", "C", "E"], "lat": 40.757308, "lng": -73.989735},
    {
        "id": "R13",
        "name": "Times Sq-42nd St",
        "lines": ["N", "Q", "R", "W", "1", "2", "3", "7"],
        "lat": 40.755477,
        "lng": -73.986754,
    },
    {
        "id": "A15",
        "name": "59th St-Columbus Circle",
        "lines": ["A", "B", "C", "D", "1"],
        "lat": 40.768296,
        "lng": -73.981736,
    },
    {"id": "F21", "name": "Smith-9th Sts", "lines": ["F", "G"], "lat": 40.673473, "lng": -73.995745},
    {"id": "F22", "name": "4th Ave-9th St", "lines": ["F", "G"], "lat": 40.670272, "lng": -73.988114},
    {"id": "F24", "name": "Bergen St", "lines": ["F", "G"], "lat": 40.686145, "lng": -73.990064},
    {"id": "F26", "name": "Hoyt-Schermerhorn Sts", "lines": ["A", "C", "G"], "lat": 40.688484, "lng": -73.985001},
    {
        "id": "R25",
        "name": "Atlantic Av-Barclays Ctr",
        "lines": ["B", "D", "N", "Q", "R", "W", "2", "3", "4", "5"],
        "lat": 40.684359,
        "lng": -73.977666,
    },
    {
        "id": "F11",
        "name": "Roosevelt Ave-Jackson Hts",
        "lines": ["E", "F", "M", "R", "7"],
        "lat": 40.746325,
        "lng": -73.891394,
    },
    {"id": "F14", "name": "Lexington Ave-53rd St", "lines": ["E", "M", "6"], "lat": 40.757552, "lng": -73.969055},
    {"id": "R11", "name": "Grand Central-42nd St", "lines": ["4", "5", "6", "7"], "lat": 40.751776, "lng": -73.976848},
]

# (line, stop_id, stop_sequence, run_minutes from previous stop)
SCHEDULE_ROWS = [
    ("F", "F22", 1, 0),
    ("F", "F21", 2, 2),
    ("F", "F20", 3, 2),
    ("F", "F24", 4, 3),
    ("F", "F25", 5, 4),
    ("F", "D20", 6, 8),
    ("F", "F18", 7, 3),
    ("F", "F11", 8, 22),
    ("G", "F22", 1, 0),
    ("G", "F21", 2, 2),
    ("G", "F20", 3, 2),
    ("G", "F24", 4, 3),
    ("G", "F26", 5, 3),
    ("C", "F26", 1, 0),
    ("C", "A41", 2, 2),
    ("C", "A32", 3, 8),
    ("C", "A27", 4, 2),
    ("C", "A23", 5, 2),
    ("C", "A25", 6, 4),
    ("C", "A15", 7, 4),
    ("A", "F26", 1, 0),
    ("A", "A41", 2, 2),
    ("A", "A32", 3, 7),
    ("A", "A27", 4, 2),
    ("A", "A25", 5, 5),
    ("A", "A15", 6, 4),
    ("E", "A32", 1, 0),
    ("E", "A27", 2, 2),
    ("E", "A23", 3, 2),
    ("E", "A25", 4, 4),
    ("E", "F14", 5, 5),
    ("E", "F11", 6, 12),
]

# User-specified priority hubs
PRIORITY_HUB_NAMES = [
    "Jay St-MetroTech",
    "Broadway-Lafayette St",
    "Carroll St",
    "Hoyt-Schermerhorn Sts",
]

# Major system transfer hubs
MAJOR_HUBS = [
    "Times Sq-42nd St",
    "14th St-Union Sq",
    "Atlantic Av-Barclays Ctr",
    "59th St-Columbus Circle",
    "Grand Central-42nd St",
    "Fulton St",
    "Herald Sq",
    "14th St-6th Ave",
    "W 4th St-Washington Sq",
    "14th St-8th Ave",
    "125th St",
]

# Known transfer minutes between lines; 0 = same platform
QUICK_TRANSFERS = {
    "Jay St-MetroTech": {
        "F": {"A": 0, "C": 0, "R": 2},
        "A": {"F": 0, "C": 0, "R": 2},
        "C": {"F": 0, "A": 0, "R": 2},
        "R": {"F": 2, "A": 2, "C": 2},
    },
    "Hoyt-Schermerhorn Sts": {
        "A": {"C": 1, "G": 3},
        "C": {"A": 1, "G": 3},
        "G": {"A": 3, "C": 3},
    },
    "Carroll St": {
        "F": {"G": 2},
        "G": {"F": 2},
    },
}

# Typical minutes between trains, used when no live prediction is available
TRAIN_HEADWAYS = {
    "1": 5, "2": 6, "3": 8, "4": 5, "5": 6, "6": 5, "7": 5,
    "A": 8, "C": 10, "E": 6,
    "B": 10, "D": 8, "F": 8, "M": 10,
    "G": 10, "L": 5,
    "N": 8, "Q": 8, "R": 8, "W": 10,
}
DEFAULT_HEADWAY = 8
