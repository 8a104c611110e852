from ridefleet.core.config import settings
from ridefleet.core.security import now_utc
from ridefleet.db.session import SessionLocal
from ridefleet.repositories import users as users_repo
from ridefleet.services.tokens import TokenService


def run(db, cfg=settings) -> dict[str, int]:
    purged = TokenService(cfg).purge(db, cfg.REFRESH_TOKEN_RETENTION_DAYS)
    cleared = users_repo.clear_expired_otp_secrets(db, now_utc())
    return {
        "refresh_tokens_expired": purged["expired"],
        "refresh_tokens_revoked": purged["revoked"],
        "otp_secrets_cleared": cleared,
    }


def main():
    db = SessionLocal()
    try:
        counts = run(db)
        db.commit()
        print(
            "ok: cleanup complete "
            f"(refresh_tokens_expired={counts['refresh_tokens_expired']}, "
            f"refresh_tokens_revoked={counts['refresh_tokens_revoked']}, "
            f"otp_secrets_cleared={counts['otp_secrets_cleared']})"
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
