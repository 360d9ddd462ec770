"""
Script to add sample data to a running SIAKAD server via the REST API.
Start the server first (``siakad`` or ``python -m siakad.main``).

Usage:
    python add_data.py
"""

import json
import os
import sys

import requests


def _console_supports_utf8() -> bool:
    enc = getattr(sys.stdout, "encoding", None)
    return enc is not None and "utf" in enc.lower()


_OK_CHAR = "✓" if _console_supports_utf8() else "[OK]"
_FAIL_CHAR = "✗" if _console_supports_utf8() else "[FAIL]"
_INFO_CHAR = "ℹ" if _console_supports_utf8() else "[INFO]"

TERM = "2025/2026-Ganjil"
YEAR = 2025


def _detect_base_url() -> str:
    """Determine a reachable BASE_URL.

    Priority: environment variable `SIAKAD_BASE_URL`, then common local ports.
    If nothing responds, fall back to http://127.0.0.1:8000.
    """
    env = os.environ.get("SIAKAD_BASE_URL")
    if env:
        return env

    candidates = [
        "http://127.0.0.1:8000",
        "http://127.0.0.1:8888",
        "http://localhost:8000",
        "http://localhost:8888",
    ]

    for c in candidates:
        try:
            resp = requests.get(f"{c}/health", timeout=0.5)
            if resp.status_code == 200:
                return c
        except requests.exceptions.RequestException:
            continue

    return candidates[0]


BASE_URL = _detect_base_url()


def check_server():
    """Check if the server is running."""
    try:
        response = requests.get(f"{BASE_URL}/health", timeout=2)
        if response.status_code == 200:
            print(f"{_OK_CHAR} Server is running at {BASE_URL}")
            return True
    except requests.exceptions.RequestException:
        pass
    print(f"{_FAIL_CHAR} Server is not running!")
    print("\nPlease start the server first:")
    print("  python -m siakad.main --port 8000")
    return False


def _post(path, data, label, expect_rejection=False):
    """POST a record and report the outcome; returns the created record or None."""
    try:
        response = requests.post(f"{BASE_URL}{path}", json=data, timeout=10)
    except requests.exceptions.RequestException as e:
        print(f"{_FAIL_CHAR} Error creating {label}: {e}")
        return None

    if response.status_code == 201:
        print(f"{_OK_CHAR} Created {label}")
        return response.json()

    error = response.json() if response.headers.get("content-type", "").startswith("application/json") else {}
    message = f"{label}: {response.status_code} {error.get('code', '')} {error.get('error', response.text)}"
    if expect_rejection:
        print(f"{_INFO_CHAR} Rejected as expected, {message}")
    else:
        print(f"{_FAIL_CHAR} Failed to create {message}")
    return None


def create_lecturer(nidn, name, email, department, position=""):
    return _post("/lecturers", {
        "nidn": nidn, "name": name, "email": email,
        "department": department, "position": position
    }, f"lecturer {name} ({nidn})")


def create_student(nim, name, email, program, semester=1):
    return _post("/students", {
        "nim": nim, "name": name, "email": email, "program": program, "semester": semester
    }, f"student {name} ({nim})")


def create_course(code, name, credits, semester, lecturer_id=None):
    return _post("/courses", {
        "code": code, "name": name, "credits": credits,
        "semester": semester, "lecturer_id": lecturer_id
    }, f"course {code} - {name} ({credits} SKS)")


def create_room(code, name, capacity, room_type="CLASSROOM", is_active=True):
    return _post("/rooms", {
        "code": code, "name": name, "capacity": capacity,
        "room_type": room_type, "is_active": is_active
    }, f"room {code}")


def enroll(student, course, expect_rejection=False):
    return _post("/krs", {
        "student_id": student["id"], "course_id": course["id"],
        "semester": TERM, "year": YEAR
    }, f"KRS {student['nim']} -> {course['code']}", expect_rejection)


def book(course, lecturer, room, day, start, end, expect_rejection=False):
    return _post("/schedules", {
        "course_id": course["id"], "lecturer_id": lecturer["id"], "room_id": room["id"],
        "day": day, "start_time": start, "end_time": end,
        "semester": course["semester"], "academic_year": "2025/2026"
    }, f"schedule {room['code']} {day} {start}-{end}", expect_rejection)


def show_credit_load(student):
    response = requests.get(f"{BASE_URL}/students/{student['id']}/credit-load",
                            params={"semester": TERM}, timeout=10)
    if response.status_code == 200:
        load = response.json()
        print(f"  {student['nim']:10} | {load['total_credits']:2} / {load['max_credits']} SKS")
    else:
        print(f"{_FAIL_CHAR} Failed to get credit load: {response.text}")


def get_statistics():
    """Get system statistics."""
    response = requests.get(f"{BASE_URL}/statistics", timeout=10)
    if response.status_code == 200:
        print(f"\n{'='*60}")
        print("System Statistics")
        print(f"{'='*60}")
        print(json.dumps(response.json(), indent=2))
    else:
        print(f"{_FAIL_CHAR} Failed to get statistics: {response.text}")


def main():
    """Main execution."""
    print("="*60)
    print("SIAKAD - Data Addition Script")
    print("="*60)
    print()

    if not check_server():
        sys.exit(1)

    print("\nCreating lecturers...")
    rahma = create_lecturer("0012345678", "Dr. Siti Rahma", "siti.rahma@kampus.ac.id", "Informatika", "Lektor")
    hadi = create_lecturer("0087654321", "Hadi Prasetyo, M.Kom", "hadi@kampus.ac.id", "Informatika")

    print("\nCreating rooms...")
    r101 = create_room("R101", "Ruang 101", 40)
    r102 = create_room("R102", "Ruang 102", 40)
    lab = create_room("LAB1", "Lab Komputer 1", 30, room_type="LAB", is_active=False)

    print("\nCreating courses...")
    catalog = [
        ("IF101", "Algoritma dan Pemrograman", 4, rahma),
        ("IF102", "Matematika Diskrit", 3, hadi),
        ("IF103", "Basis Data", 4, rahma),
        ("IF104", "Struktur Data", 4, hadi),
        ("IF105", "Jaringan Komputer", 3, rahma),
        ("IF106", "Sistem Operasi", 3, hadi),
        ("IF107", "Rekayasa Perangkat Lunak", 4, rahma),
    ]
    courses = [create_course(code, name, credits, 1, lecturer and lecturer["id"])
               for code, name, credits, lecturer in catalog]

    print("\nCreating students...")
    budi = create_student("2025001", "Budi Santoso", "budi@kampus.ac.id", "Teknik Informatika")
    ani = create_student("2025002", "Ani Lestari", "ani@kampus.ac.id", "Sistem Informasi")

    if not all([rahma, hadi, r101, r102, lab, budi, ani, *courses]):
        print(f"\n{_FAIL_CHAR} Catalog incomplete (was the script already run?); stopping.")
        sys.exit(1)

    print("\nFilling KRS...")
    for course in courses[:6]:
        enroll(budi, course)
    enroll(budi, courses[6], expect_rejection=True)
    enroll(budi, courses[0], expect_rejection=True)
    for course in courses[:2]:
        enroll(ani, course)

    print("\nBooking rooms...")
    book(courses[0], rahma, r101, "MONDAY", "08:00", "10:00")
    book(courses[1], hadi, r101, "MONDAY", "09:00", "11:00", expect_rejection=True)
    book(courses[1], hadi, r101, "MONDAY", "10:00", "12:00")
    book(courses[2], rahma, r102, "TUESDAY", "13:00", "15:30")
    book(courses[3], hadi, lab, "WEDNESDAY", "08:00", "10:00", expect_rejection=True)

    print(f"\n{'='*60}")
    print(f"Credit load ({TERM})")
    print(f"{'='*60}")
    show_credit_load(budi)
    show_credit_load(ani)

    get_statistics()

    print("\n" + "="*60)
    print(f"{_OK_CHAR} Sample data added successfully!")
    print("="*60)
    print("\nYou can now:")
    print(f"  - View API docs: {BASE_URL}/docs")
    print(f"  - List KRS: curl {BASE_URL}/krs")
    print(f"  - Room timetable: curl {BASE_URL}/rooms/<room_id>/timetable")
    print()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print(f"\n\n{_FAIL_CHAR} Interrupted by user")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"\n{_FAIL_CHAR} Request failed: {e}")
        sys.exit(1)
