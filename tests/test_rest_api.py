import pytest
from fastapi.testclient import TestClient

TERM = "2025/2026-Ganjil"


@pytest.fixture
def client(platform):
    return TestClient(platform.app)


@pytest.fixture
def refs(client):
    def post(path, body):
        response = client.post(path, json=body)
        assert response.status_code == 201, response.text
        return response.json()

    lecturer = post("/lecturers", {"nidn": "0012345678", "name": "Dr. Siti", "email": "siti@k.ac.id",
                                   "department": "Informatika"})
    student = post("/students", {"nim": "2025001", "name": "Budi", "email": "budi@k.ac.id",
                                 "program": "TI"})
    room = post("/rooms", {"code": "R101", "name": "Ruang 101", "capacity": 40})
    courses = [post("/courses", {"code": f"IF10{i}", "name": f"Course {i}", "credits": credits,
                                 "lecturer_id": lecturer["id"]})
               for i, credits in enumerate([4, 4, 4, 4, 3, 3, 3])]
    return {"lecturer": lecturer, "student": student, "room": room, "courses": courses}


def krs(refs, course):
    return {"student_id": refs["student"]["id"], "course_id": course["id"],
            "semester": TERM, "year": 2025}


def schedule(refs, start, end, day="MONDAY"):
    return {"course_id": refs["courses"][0]["id"], "lecturer_id": refs["lecturer"]["id"],
            "room_id": refs["room"]["id"], "day": day, "start_time": start, "end_time": end,
            "semester": 1, "academic_year": "2025/2026"}


def test_root_and_health(client):
    assert client.get("/").json()["message"] == "SIAKAD API"
    assert client.get("/health").json()["status"] == "healthy"


def test_krs_lifecycle(client, refs):
    created = client.post("/krs", json=krs(refs, refs["courses"][0]))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "PENDING"

    listed = client.get("/krs", params={"student_id": refs["student"]["id"], "status": "pending"})
    assert [e["id"] for e in listed.json()] == [body["id"]]

    updated = client.put(f"/krs/{body['id']}", json={"status": "APPROVED"})
    assert updated.status_code == 200
    assert updated.json()["version"] == 2

    assert client.delete(f"/krs/{body['id']}").status_code == 204
    assert client.get(f"/krs/{body['id']}").status_code == 404


def test_krs_errors_map_to_status_codes(client, refs):
    courses = refs["courses"]
    for course in courses[:6]:
        assert client.post("/krs", json=krs(refs, course)).status_code == 201

    duplicate = client.post("/krs", json=krs(refs, courses[0]))
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"

    over = client.post("/krs", json=krs(refs, courses[6]))
    assert over.status_code == 400
    body = over.json()
    assert body["code"] == "capacity_exceeded"
    assert body["details"]["attempted_total"] == 25
    assert body["details"]["ceiling"] == 24

    missing = client.post("/krs", json={**krs(refs, courses[0]), "course_id": "nope"})
    assert missing.status_code == 404
    assert missing.json()["details"]["entity"] == "course"

    empty = client.post("/krs", json={**krs(refs, courses[0]), "semester": ""})
    assert empty.status_code == 400
    assert empty.json()["code"] == "validation_error"

    malformed = client.post("/krs", json={"student_id": refs["student"]["id"]})
    assert malformed.status_code == 400
    assert malformed.json()["code"] == "validation_error"


def test_credit_load_endpoint(client, refs):
    client.post("/krs", json=krs(refs, refs["courses"][0]))

    response = client.get(f"/students/{refs['student']['id']}/credit-load", params={"semester": TERM})

    assert response.json() == {"student_id": refs["student"]["id"], "semester": TERM,
                               "total_credits": 4, "max_credits": 24, "remaining_credits": 20}
    assert client.get("/students/nope/credit-load", params={"semester": TERM}).status_code == 404


def test_delete_krs_with_grade_conflicts(client, refs):
    record = client.post("/krs", json=krs(refs, refs["courses"][0])).json()
    grade = client.post("/grades", json={"student_id": refs["student"]["id"],
                                         "course_id": refs["courses"][0]["id"],
                                         "semester": TERM, "year": 2025, "grade": "A"})
    assert grade.status_code == 201

    response = client.delete(f"/krs/{record['id']}")
    assert response.status_code == 409
    assert response.json()["error"] == "grades exist for this enrollment"


def test_schedule_conflicts(client, refs):
    first = client.post("/schedules", json=schedule(refs, "08:00", "10:00"))
    assert first.status_code == 201

    clash = client.post("/schedules", json=schedule(refs, "09:00", "11:00"))
    assert clash.status_code == 409
    assert clash.json()["details"]["conflicting_booking_id"] == first.json()["id"]

    assert client.post("/schedules", json=schedule(refs, "10:00", "12:00")).status_code == 201
    assert client.post("/schedules", json=schedule(refs, "11:00", "10:00")).status_code == 400
    assert client.post("/schedules", json=schedule(refs, "08:00", "09:00", day="HOLIDAY")).status_code == 400

    listed = client.get("/schedules", params={"room_id": refs["room"]["id"], "day": "monday"})
    assert [b["start_time"] for b in listed.json()] == ["08:00", "10:00"]


def test_schedule_update_cancel_delete(client, refs):
    booking = client.post("/schedules", json=schedule(refs, "08:00", "10:00")).json()

    moved = client.put(f"/schedules/{booking['id']}", json={"day": "TUESDAY"})
    assert moved.status_code == 200
    assert moved.json()["day"] == "TUESDAY"

    cancelled = client.post(f"/schedules/{booking['id']}/cancel")
    assert cancelled.json()["status"] == "CANCELLED"
    assert client.get(f"/rooms/{refs['room']['id']}/timetable").json() == []

    assert client.delete(f"/schedules/{booking['id']}").status_code == 204
    assert client.delete(f"/schedules/{booking['id']}").status_code == 404


def test_inactive_room_booking(client, refs):
    client.put(f"/rooms/{refs['room']['id']}", json={"is_active": False})

    response = client.post("/schedules", json=schedule(refs, "08:00", "10:00"))

    assert response.status_code == 409
    assert response.json()["error"] == "room is inactive"


def test_catalog_endpoints(client, refs):
    assert len(client.get("/courses").json()) == 7
    assert client.get(f"/students/{refs['student']['id']}").json()["nim"] == "2025001"
    assert client.get("/lecturers/nope").status_code == 404
    assert client.post("/rooms", json={"code": "R101", "name": "Again", "capacity": 10}).status_code == 409
    assert client.delete(f"/courses/{refs['courses'][6]['id']}").status_code == 204
    assert len(client.get("/courses").json()) == 6


def test_krs_search(client, refs):
    for course in refs["courses"][:2]:
        client.post("/krs", json=krs(refs, course))

    by_course = client.get("/krs", params={"search": "if101"}).json()
    assert [e["course_id"] for e in by_course] == [refs["courses"][1]["id"]]
    assert len(client.get("/krs", params={"search": "BUDI"}).json()) == 2
    assert len(client.get("/krs", params={"search": "  "}).json()) == 2
    assert client.get("/krs", params={"search": "nobody"}).json() == []


def test_student_and_lecturer_updates(client, refs):
    student_id = refs["student"]["id"]
    updated = client.put(f"/students/{student_id}", json={"semester": 2, "status": "graduated"})
    assert updated.status_code == 200
    assert (updated.json()["semester"], updated.json()["status"]) == (2, "GRADUATED")
    assert client.put(f"/students/{student_id}", json={"email": "not-an-email"}).status_code == 400

    lecturer_id = refs["lecturer"]["id"]
    renamed = client.put(f"/lecturers/{lecturer_id}", json={"name": "Prof. Siti"})
    assert renamed.json()["name"] == "Prof. Siti"
    assert client.put("/lecturers/nope", json={"name": "X"}).status_code == 404


def test_catalog_deletes(client, refs):
    client.post("/krs", json=krs(refs, refs["courses"][0]))

    blocked = client.delete(f"/students/{refs['student']['id']}")
    assert blocked.status_code == 409
    assert blocked.json()["error"] == "student has enrollments or grades"
    assert client.delete(f"/lecturers/{refs['lecturer']['id']}").status_code == 409

    other = client.post("/students", json={"nim": "2025002", "name": "Ani", "email": "ani@k.ac.id",
                                           "program": "SI"}).json()
    assert client.delete(f"/students/{other['id']}").status_code == 204
    assert client.get(f"/students/{other['id']}").status_code == 404


def test_course_update(client, refs):
    course_id = refs["courses"][6]["id"]

    updated = client.put(f"/courses/{course_id}", json={"name": "Kecerdasan Buatan", "credits": 2})
    assert updated.status_code == 200
    assert (updated.json()["name"], updated.json()["credits"]) == ("Kecerdasan Buatan", 2)

    clash = client.put(f"/courses/{course_id}", json={"code": refs["courses"][0]["code"]})
    assert clash.status_code == 409
