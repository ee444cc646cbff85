from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class Vendor(Enum):
    IMS3000 = "IMS3000"
    DCP2000 = "DCP2000"

    @classmethod
    def from_hint(cls, hint: str | None) -> "Vendor | None":
        value = (hint or "").strip().upper()
        for vendor in cls:
            if vendor.value == value:
                return vendor
        return None


def _not_login(location: str) -> bool:
    return bool(location) and "login" not in location.lower()


def _to_index(location: str) -> bool:
    return "index.php" in location and _not_login(location)


@dataclass(frozen=True)
class VendorProfile:
    vendor: Vendor
    login_path: str
    login_extra_fields: tuple[tuple[str, str], ...]
    logout_path: str
    logout_referer_path: str
    playback_path: str
    # IMS3000 confirms a plain 200 login reply with a second GET; DCP2000 trusts the body.
    confirm_path: str | None = None
    redirect_accepted: Callable[[str], bool] = field(default=_not_login, compare=False)

    def login_form(self, username: str, password: str) -> list[tuple[str, str]]:
        return [("username", username), ("password", password), *self.login_extra_fields]


PROFILES: dict[Vendor, VendorProfile] = {
    Vendor.IMS3000: VendorProfile(
        vendor=Vendor.IMS3000,
        login_path="/web/login.php",
        login_extra_fields=(("from", ""), ("screen", "false")),
        logout_path="/web/logout/",
        logout_referer_path="/web/index.php",
        playback_path="/web/index.php?page=sys_control/cinelister/playback.php",
        confirm_path="/web/index.php",
        redirect_accepted=_to_index,
    ),
    Vendor.DCP2000: VendorProfile(
        vendor=Vendor.DCP2000,
        login_path="/web/index.php",
        login_extra_fields=(("screen", "auto"),),
        logout_path="/web/logout/index.php",
        logout_referer_path="/web/overview/",
        playback_path="/web/sys_control/cinelister/playback.php",
    ),
}


def login_order(hint: str | None) -> list[Vendor]:
    """Hinted vendor first, the other one as fallback. No hint means IMS3000 first."""
    first = Vendor.from_hint(hint) or Vendor.IMS3000
    return [first] + [v for v in Vendor if v is not first]


def profile_for(detected: Vendor | None, hint: str | None = None) -> VendorProfile:
    vendor = detected or Vendor.from_hint(hint) or Vendor.IMS3000
    return PROFILES[vendor]
