from pathlib import Path

from sqlmodel import Session

from conftest import make_png
from storefront import models
from storefront.config import settings
from storefront.database import engine
from storefront.repositories import UnitOfWork
from storefront.utils.photo_storage import PhotoDeletionResult, PhotoError, PhotoService


def _add_photo(client, headers, product_id, color="white"):
    files = {'file': ('photo.png', make_png(color=color), 'image/png')}
    return client.post(f'/api/moderator/product/add-photo/{product_id}', files=files, headers=headers)


def _stored_path(url: str) -> Path:
    return settings.PHOTO_STORAGE_DIR / url[len(settings.PHOTO_BASE_URL) + 1:]


def test_first_photo_becomes_main(client, moderator_headers, product):
    first = _add_photo(client, moderator_headers, product['id'])
    assert first.status_code == 201
    assert first.json()['is_main'] is True
    assert first.headers['Location'].endswith(f"/api/moderator/product/{product['id']}")
    assert _stored_path(first.json()['url']).exists()

    second = _add_photo(client, moderator_headers, product['id'], color="black")
    assert second.status_code == 201
    assert second.json()['is_main'] is False

    dto = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers).json()
    assert len(dto['photos']) == 2
    assert dto['photo_url'] == first.json()['url']


def test_stored_photo_is_served(client, moderator_headers, product):
    photo = _add_photo(client, moderator_headers, product['id']).json()
    r = client.get(photo['url'])
    assert r.status_code == 200
    assert r.headers['content-type'] == 'image/jpeg'


def test_add_photo_rejects_non_images_and_missing_products(client, moderator_headers, product):
    files = {'file': ('notes.txt', b'not an image', 'text/plain')}
    bad = client.post(f"/api/moderator/product/add-photo/{product['id']}", files=files, headers=moderator_headers)
    assert bad.status_code == 400
    missing = _add_photo(client, moderator_headers, 765432)
    assert missing.status_code == 404


def test_setting_a_photo_as_main_unsets_the_previous_main_photo(client, moderator_headers, product):
    first = _add_photo(client, moderator_headers, product['id']).json()
    second = _add_photo(client, moderator_headers, product['id']).json()

    r = client.put(f"/api/moderator/product/set-main-photo/{second['id']}", headers=moderator_headers)
    assert r.status_code == 204
    photos = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers).json()['photos']
    main = [p['id'] for p in photos if p['is_main']]
    assert main == [second['id']]
    assert first['id'] not in main

    already = client.put(f"/api/moderator/product/set-main-photo/{second['id']}", headers=moderator_headers)
    assert already.status_code == 400
    assert already.json()['detail'] == 'This is already the main photo'

    missing = client.put('/api/moderator/product/set-main-photo/654321', headers=moderator_headers)
    assert missing.status_code == 404


def test_deleting_a_main_photo_returns_400(client, moderator_headers, product):
    main = _add_photo(client, moderator_headers, product['id']).json()
    r = client.delete(f"/api/moderator/product/delete-photo/{main['id']}", headers=moderator_headers)
    assert r.status_code == 400
    assert r.json()['detail'] == 'You cannot delete the main photo'


def test_delete_photo_removes_row_and_file(client, moderator_headers, product):
    _add_photo(client, moderator_headers, product['id'])
    extra = _add_photo(client, moderator_headers, product['id']).json()
    r = client.delete(f"/api/moderator/product/delete-photo/{extra['id']}", headers=moderator_headers)
    assert r.status_code == 200
    assert not _stored_path(extra['url']).exists()
    photos = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers).json()['photos']
    assert extra['id'] not in [p['id'] for p in photos]
    again = client.delete(f"/api/moderator/product/delete-photo/{extra['id']}", headers=moderator_headers)
    assert again.status_code == 404


def test_deleting_a_product_removes_its_stored_photos(client, moderator_headers, product):
    photo = _add_photo(client, moderator_headers, product['id']).json()
    assert client.delete(f"/api/moderator/product/{product['id']}", headers=moderator_headers).status_code == 200
    assert not _stored_path(photo['url']).exists()


def _stored_files():
    root = settings.PHOTO_STORAGE_DIR / 'products'
    return set(root.glob('*.jpg')) if root.exists() else set()


def test_add_photo_to_missing_product_is_404_before_size_check(client, moderator_headers, monkeypatch):
    monkeypatch.setattr(settings, 'MAX_UPLOAD_BYTES', 10)
    r = _add_photo(client, moderator_headers, 765431)
    assert r.status_code == 404
    assert r.json()['id'] == 765431


def test_add_photo_rejects_oversized_upload(client, moderator_headers, product, monkeypatch):
    monkeypatch.setattr(settings, 'MAX_UPLOAD_BYTES', 10)
    r = _add_photo(client, moderator_headers, product['id'])
    assert r.status_code == 400
    assert r.json()['detail'] == 'file too large'


def test_add_photo_commit_failure_removes_stored_file(client, moderator_headers, product, monkeypatch):
    before = _stored_files()
    monkeypatch.setattr(UnitOfWork, 'complete', lambda self: False)
    r = _add_photo(client, moderator_headers, product['id'])
    assert r.status_code == 400
    assert r.json()['detail'] == 'Problem adding photo'
    assert _stored_files() == before


def test_set_main_photo_commit_failure(client, moderator_headers, product, monkeypatch):
    _add_photo(client, moderator_headers, product['id'])
    second = _add_photo(client, moderator_headers, product['id']).json()
    monkeypatch.setattr(UnitOfWork, 'complete', lambda self: False)
    r = client.put(f"/api/moderator/product/set-main-photo/{second['id']}", headers=moderator_headers)
    assert r.status_code == 400
    assert r.json()['detail'] == 'Failed to set main photo'


def test_delete_photo_reports_storage_error(client, moderator_headers, product, monkeypatch):
    _add_photo(client, moderator_headers, product['id'])
    extra = _add_photo(client, moderator_headers, product['id']).json()
    monkeypatch.setattr(
        PhotoService,
        'delete_photo',
        lambda self, public_id: PhotoDeletionResult(result='error', error=PhotoError('storage offline')),
    )
    r = client.delete(f"/api/moderator/product/delete-photo/{extra['id']}", headers=moderator_headers)
    assert r.status_code == 400
    assert r.json()['detail'] == 'storage offline'
    photos = client.get(f"/api/moderator/product/{product['id']}", headers=moderator_headers).json()['photos']
    assert extra['id'] in [p['id'] for p in photos]


def test_delete_external_photo_skips_storage(client, moderator_headers, product, monkeypatch):
    with Session(engine) as session:
        photo = models.ProductPhoto(product_id=product['id'], url='https://cdn.example.com/x.jpg', is_main=False)
        session.add(photo)
        session.commit()
        photo_id = photo.id
    calls = []
    monkeypatch.setattr(PhotoService, 'delete_photo', lambda self, public_id: calls.append(public_id))
    r = client.delete(f'/api/moderator/product/delete-photo/{photo_id}', headers=moderator_headers)
    assert r.status_code == 200
    assert calls == []
