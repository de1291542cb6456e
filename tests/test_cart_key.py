from foodcart.services.cart_key import cart_key_for, device_cart_key


def test_signed_in_user_key():
    assert cart_key_for(42) == "user:42"


def test_device_key_created_once_and_reused(tmp_path):
    path = str(tmp_path / "nested" / "device_key")

    first = device_cart_key(path)
    second = device_cart_key(path)

    assert first == second
    assert cart_key_for(None, path) == f"device:{first}"


def test_blank_device_key_file_is_replaced(tmp_path):
    path = tmp_path / "device_key"
    path.write_text("  \n")

    key = device_cart_key(str(path))

    assert key
    assert path.read_text() == key
