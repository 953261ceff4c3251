import pytest

from conftest import seed_project, seed_user

from ctp.domain.errors import InvalidTransitionError, NotFoundError, ProjectNotFoundError, ValidationError


def test_add_project_defaults(app):
    pid = app.projects.add_project("Kitchen remodel")
    p = app.projects.get_project(pid)
    assert p.type == "Renovation"
    assert p.status == "In Progress"
    assert p.current_spend == 0.0
    assert p.punch_list == ()
    assert p.photos == ()


def test_add_project_validation(app):
    with pytest.raises(ValidationError):
        app.projects.add_project("")
    with pytest.raises(ValidationError):
        app.projects.add_project("X", type="Landscaping")
    with pytest.raises(ValidationError):
        app.projects.add_project("X", budget=-1)


def test_punch_list_toggle(app):
    pid = seed_project(app)
    item_id = app.projects.add_punch_list_item(pid, "Touch up paint in hallway")

    app.projects.toggle_punch_list_item(pid, item_id)
    assert app.projects.get_project(pid).punch_list[0].is_complete is True
    app.projects.toggle_punch_list_item(pid, item_id)
    assert app.projects.get_project(pid).punch_list[0].is_complete is False

    with pytest.raises(NotFoundError):
        app.projects.toggle_punch_list_item(pid, 999)


def test_batch_upload_shares_one_timestamp_and_keys_blobs(app, clock):
    pid = seed_project(app)
    photos = app.photos.add_project_photos(pid, [b"img-1", b"img-2"], description="Framing")

    assert len(photos) == 2
    assert {p.date_added for p in photos} == {clock()}
    assert [p.key for p in photos] == [f"proj-{pid}-{p.id}" for p in photos]

    stored = dict((meta.key, data) for meta, data in app.photos.get_photos_for_project(pid))
    assert stored == {photos[0].key: b"img-1", photos[1].key: b"img-2"}


def test_punch_list_photos_and_markup_replacement(app):
    pid = seed_project(app)
    item_id = app.projects.add_punch_list_item(pid, "Fix outlet cover")
    (photo,) = app.photos.add_punch_list_photos(pid, item_id, [b"before"])

    assert photo.key == f"punch-{pid}-{item_id}-{photo.id}"
    project = app.projects.get_project(pid)
    assert project.photos == ()
    assert project.punch_list[0].photos == (photo,)

    app.photos.update_punch_list_photo(pid, item_id, photo.id, b"marked-up")
    assert app.photos.get_photo(photo.key) == b"marked-up"

    with pytest.raises(NotFoundError):
        app.photos.update_punch_list_photo(pid, item_id + 1, photo.id, b"x")


def test_photo_upload_validation(app):
    pid = seed_project(app)
    with pytest.raises(ValidationError):
        app.photos.add_project_photos(pid, [])
    with pytest.raises(ValidationError):
        app.photos.add_project_photos(pid, [b""])
    with pytest.raises(ProjectNotFoundError):
        app.photos.add_project_photos(999, [b"img"])
    with pytest.raises(NotFoundError):
        app.photos.add_punch_list_photos(pid, 999, [b"img"])


def test_delete_project_removes_punch_list_photos_and_blobs(app):
    pid = seed_project(app)
    keep = seed_project(app, "Keep")
    item_id = app.projects.add_punch_list_item(pid, "Caulk tub")
    (project_photo,) = app.photos.add_project_photos(pid, [b"a"])
    (punch_photo,) = app.photos.add_punch_list_photos(pid, item_id, [b"b"])
    (kept_photo,) = app.photos.add_project_photos(keep, [b"c"])

    app.projects.delete_project(pid)

    with pytest.raises(ProjectNotFoundError):
        app.projects.get_project(pid)
    assert app.photos.get_photo(project_photo.key) is None
    assert app.photos.get_photo(punch_photo.key) is None
    assert app.repo.get_photo_meta(punch_photo.id) is None
    assert app.photos.get_photo(kept_photo.key) == b"c"
    assert app.photos.get_photos_for_project(pid) == []

    with pytest.raises(ProjectNotFoundError):
        app.projects.delete_project(pid)


def test_tasks_lifecycle(app):
    pid = seed_project(app)
    uid = seed_user(app)
    task_id = app.tasks.add_task("Hang drywall", pid, assignee_id=uid)

    (task,) = app.tasks.list_tasks(pid)
    assert task.id == task_id
    assert task.status == "To Do"
    assert task.assignee_id == uid

    assert app.tasks.update_task_status(task_id, "Done").status == "Done"
    with pytest.raises(ValidationError):
        app.tasks.update_task_status(task_id, "Blocked")
    with pytest.raises(NotFoundError):
        app.tasks.update_task_status(999, "Done")
    with pytest.raises(NotFoundError):
        app.tasks.add_task("Orphan", pid, assignee_id=999)
    with pytest.raises(ProjectNotFoundError):
        app.tasks.add_task("Orphan", 999)


def test_user_validation_and_update(app):
    with pytest.raises(ValidationError):
        app.users.add_user(" ", "Installer", 10)
    with pytest.raises(ValidationError):
        app.users.add_user("Ana", "Installer", -1)

    uid = seed_user(app, "Ana", 22.0)
    user = app.users.update_user(uid, role="Foreman")
    assert user.role == "Foreman"
    assert user.hourly_rate == 22.0
    assert user.is_clocked_in is False


def test_project_with_open_session_cannot_be_deleted(app, clock):
    uid = seed_user(app, rate=25.0)
    pid = seed_project(app)
    app.time_tracking.clock_in(uid, pid)

    with pytest.raises(InvalidTransitionError):
        app.projects.delete_project(pid)

    clock.advance(hours=2)
    closed = app.time_tracking.clock_out(uid)
    assert closed.cost == 50.0
    assert app.projects.get_project(pid).current_spend == 50.0
    assert app.invoices.generate_invoice(pid).total_amount == 60.0

    app.projects.delete_project(pid)
    with pytest.raises(ProjectNotFoundError):
        app.projects.get_project(pid)


def test_clock_out_fails_when_spend_cannot_be_posted(app, clock):
    uid = seed_user(app)
    pid = seed_project(app)
    app.time_tracking.clock_in(uid, pid)
    conn = app.repo._conn()
    conn.execute("DELETE FROM projects WHERE id=?", (pid,))
    conn.commit()
    conn.close()
    clock.advance(hours=1)

    with pytest.raises(ProjectNotFoundError):
        app.time_tracking.clock_out(uid)

    assert app.time_tracking.open_log_for(uid) is not None
    assert app.users.get_user(uid).is_clocked_in
