"""The five stages of a provisioning run, in order."""

from __future__ import annotations

import hmac
from typing import Any, Dict

from . import bootscripts, crypttab, initramfs
from .errors import ConfigError, EnrollmentFailed, VerificationMismatch
from .executil import info, warn
from .guidance import render_guidance
from .paths import HOOK_PATH, KEYSCRIPT_PATH, initrd_path, under_root
from .pipeline import RunContext, Stage
from .preflight import ensure_luks, require_root, require_tools, resolve_target
from .secret import check_keysize, generate_secret, remove_secret_file, write_secret_file
from .tpm import ensure_tpm2_tools, fmt_index


def _warn(ctx: RunContext, msg: str) -> None:
    ctx.warnings.append(msg)
    warn(msg)


def preflight(ctx: RunContext) -> Dict[str, Any]:
    require_root(ctx.argv or None)
    require_tools()
    target = resolve_target(ctx.device_arg, ctx.luks, ctx.config.root)
    ensure_luks(target.device, ctx.luks)
    info(f'Using "{target.device}", which appears to be a valid LUKS encrypted device...')
    ctx.target = target
    return {"device": target.device, "name": target.name, "from_crypttab": target.from_crypttab}


def provision_secret(ctx: RunContext) -> Dict[str, Any]:
    cfg = ctx.config
    index = fmt_index(cfg.nv_index)
    weak = check_keysize(cfg.keysize)
    if weak:
        _warn(ctx, weak)

    info("Checking for tpm2-tools...")
    ensure_tpm2_tools()

    info(f"Defining the area on the TPM where we will store a {cfg.keysize} character key...")
    ctx.tpm.undefine(cfg.nv_index)
    ctx.tpm.define(cfg.nv_index, cfg.keysize)

    info(f"Generating a {cfg.keysize} char alphanumeric key...")
    secret = generate_secret(cfg.keysize)
    try:
        ctx.secret_path = write_secret_file(cfg.secret_dir, secret)
    except OSError as exc:
        raise ConfigError(
            f"cannot write the key file under {cfg.secret_dir}: {exc}",
            hint=(
                "Point TPM2_LUKS_SECRET_DIR at a writable directory and rerun; "
                f"TPM index {index} has been redefined but holds no key yet."
            ),
        ) from exc

    info("Storing the key in the TPM...")
    ctx.tpm.write(cfg.nv_index, ctx.secret_path)

    info("Checking the saved key against the one in the TPM...")
    stored = ctx.tpm.read(cfg.nv_index, cfg.keysize)
    if not hmac.compare_digest(stored, secret.encode("ascii")):
        raise VerificationMismatch(
            f"The key file {ctx.secret_path} does not match what is stored in the TPM at {index}. Cannot proceed!",
            hint="The LUKS volume was not modified.",
        )
    return {"index": index, "size": cfg.keysize, "secret_path": ctx.secret_path}


def enroll_key(ctx: RunContext) -> Dict[str, Any]:
    device = ctx.target.device
    info("Adding the new key to LUKS. You will need to enter the current passphrase used to unlock the drive...")
    rc = ctx.luks.add_key(device, ctx.secret_path)
    if rc != 0:
        raise EnrollmentFailed(
            f"Something went wrong adding the encryption key to {device} (rc={rc}).",
            hint=(
                f"The key is still in {ctx.secret_path} and in the TPM; check /etc/crypttab and/or lsblk "
                f"for the encrypted volume, then retry: cryptsetup luksAddKey <device> {ctx.secret_path}"
            ),
        )
    info("Removing the key file...")
    remove_secret_file(ctx.secret_path)
    removed = ctx.secret_path
    ctx.secret_path = None
    return {"device": device, "removed": removed}


def integrate_boot(ctx: RunContext) -> Dict[str, Any]:
    cfg = ctx.config
    info(f"Creating a key recovery script and putting it at {KEYSCRIPT_PATH}...")
    keyscript = bootscripts.install_script(
        cfg.root,
        KEYSCRIPT_PATH,
        bootscripts.render_keyscript(cfg.keysize, cfg.nv_index),
        bootscripts.KEYSCRIPT_MODE,
    )

    info(f"Creating initramfs hook and putting it at {HOOK_PATH}...")
    lib_dir = bootscripts.find_tcti_lib_dir()
    if lib_dir is None:
        lib_dir = bootscripts.DEFAULT_LIB_DIR
        _warn(ctx, f"libtss2-tcti-device not found, the hook will look in {lib_dir}")
    hook = bootscripts.install_script(cfg.root, HOOK_PATH, bootscripts.render_hook(lib_dir), bootscripts.HOOK_MODE)

    info("Backing up /etc/crypttab to /etc/crypttab.bak, then updating it to run tpm2-getkey on decrypt...")
    ct = crypttab.patch_first_entry(cfg.root, KEYSCRIPT_PATH)
    if ct["extra_entries"]:
        ctx.warnings.append(f"{ct['extra_entries']} more crypttab entries need manual editing")

    kver = ctx.kernel or initramfs.kernel_version()
    ctx.kernel = kver
    info("Copying the current initramfs just in case, then updating the initramfs with auto unlocking from the TPM...")
    backup = initramfs.backup_image(cfg.root, kver)
    rebuilt = initramfs.rebuild(cfg.root, kver)

    check = initramfs.verify_image_contents(under_root(cfg.root, initrd_path(kver)))
    if check.get("error"):
        _warn(ctx, f"could not list the new initramfs ({check['error']}); its contents were not verified")
    elif check["missing"]:
        _warn(ctx, f"new initramfs lacks {', '.join(check['missing'])}; auto-unlock will fall back to the passphrase")
    return {
        "keyscript": keyscript,
        "hook": hook,
        "crypttab": ct,
        "backup": backup,
        "rebuild": rebuilt,
        "verify": check,
    }


def operator_guidance(ctx: RunContext) -> Dict[str, Any]:
    cfg = ctx.config
    ctx.guidance = render_guidance(ctx.target.device, cfg.keysize, cfg.nv_index, ctx.kernel or initramfs.kernel_version())
    print()
    print(ctx.guidance, end="")
    return {}


STAGES = [
    Stage("preflight", preflight),
    Stage("secret_provisioning", provision_secret),
    Stage("key_enrollment", enroll_key),
    Stage("boot_integration", integrate_boot),
    Stage("operator_guidance", operator_guidance),
]
