import shortuuid

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_base36_token(length: int = 9) -> str:
    return shortuuid.ShortUUID(alphabet=BASE36_ALPHABET).random(length=length)
