#!/usr/bin/env python3
"""
signgate CLI: custodial multisig signing gatekeeper

Quick start
1) Create the custodial key and hand its xpub to the other cosigners:
   python -m signgate.cli create-key --key-name vault
2) Export the multisig setup from BlueWallet (includes our xpub) and register it:
   python -m signgate.cli create-wallet --key-name vault --setup-file vault.txt
3) Configure the policy (wallets start locked: halted, zero spend limit):
   python -m signgate.cli set-limit --key-name vault --max-spend 500000
   python -m signgate.cli reset --key-name vault
4) Sign a PSBT; it is signed only if every policy approves:
   python -m signgate.cli sign --key-name vault --psbt-in spend.psbt --psbt-out signed.psbt

Notes
- Data lives under --data-dir (or SIGNGATE_DATA_DIR).
- `halt` pulls the andon cord: nothing is signed until `reset`.
"""
import argparse
from typing import Any, Dict, Optional, Sequence

from .config import Settings, configure_logging
from .descriptor import Branch, parse_setup, render_descriptors, wallet_identity
from .hexutil import file_or_text
from .policy import PolicyConfig
from .service import GatekeeperService
from .wallet import MultisigWalletView

EXIT_REJECTED = 2


def _print(args: argparse.Namespace, out: Dict[str, Any]) -> None:
    if args.json:
        import json
        print(json.dumps(out))
    else:
        width = max(len(k) for k in out)
        for k, v in out.items():
            print(f"{k.ljust(width)} =", v)


def _config_out(config: PolicyConfig) -> Dict[str, Any]:
    return {
        'wallet_identity': config.wallet_identity,
        'max_spend_per_tx': config.max_spend_per_tx,
        'halted': config.halted,
    }


def _service(args: argparse.Namespace) -> GatekeeperService:
    return GatekeeperService.from_settings(args.settings)


def cmd_show_descriptor(args: argparse.Namespace) -> None:
    setup = parse_setup(file_or_text('setup', None, args.setup_file))
    receive, change = render_descriptors(setup)
    out: Dict[str, Any] = {
        'descriptor': receive,
        'change_descriptor': change,
        'wallet_identity': wallet_identity(setup),
    }
    if args.disasm:
        from .script import disasm
        view = MultisigWalletView(setup, args.settings.network, 1)
        out['witness_script_0'] = disasm(view.witness_script(Branch.RECEIVE, 0))
    _print(args, out)


def cmd_create_key(args: argparse.Namespace) -> None:
    xpub = _service(args).create_key(args.key_name)
    _print(args, {'key_name': args.key_name, 'xpub': xpub})


def cmd_create_wallet(args: argparse.Namespace) -> None:
    setup_text = file_or_text('setup', args.setup, args.setup_file)
    svc = _service(args)
    address = svc.create_wallet(args.key_name, setup_text)
    _print(args, {
        'key_name': args.key_name,
        'first_address': address,
        'wallet_identity': svc.wallet_identity(args.key_name),
    })


def cmd_sign(args: argparse.Namespace) -> None:
    psbt_text = file_or_text('psbt', None, args.psbt_in)
    res = _service(args).sign(args.key_name, psbt_text)
    if res.ok:
        with open(args.psbt_out, 'wt') as f:
            f.write(res.signed_transaction or '')
    if args.json:
        import json
        print(json.dumps(res.to_response()))
    elif res.ok:
        print('[OK] transaction signed')
        print('psbt_out =', args.psbt_out)
    else:
        print('[REJECTED] transaction failed policy checks')
        for reason in res.reasons:
            print('reason   =', reason)
    if not res.ok:
        raise SystemExit(EXIT_REJECTED)


def cmd_halt(args: argparse.Namespace) -> None:
    _print(args, _config_out(_service(args).halt_wallet(args.key_name)))


def cmd_reset(args: argparse.Namespace) -> None:
    _print(args, _config_out(_service(args).reset_wallet(args.key_name)))


def cmd_set_limit(args: argparse.Namespace) -> None:
    _print(args, _config_out(_service(args).set_spend_limit(args.key_name, args.max_spend)))


def cmd_show_policy(args: argparse.Namespace) -> None:
    _print(args, _config_out(_service(args).policy_config(args.key_name)))


def main(argv: Optional[Sequence[str]] = None) -> None:
    ap = argparse.ArgumentParser(description="signgate CLI (custodial multisig signing gatekeeper)",
                                 epilog=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument('--data-dir', help='storage directory (default: SIGNGATE_DATA_DIR or ./signgate-data)')
    ap.add_argument('--network', choices=['bitcoin', 'testnet', 'signet', 'regtest'], help='chain for keys and addresses')
    ap.add_argument('--log-level', help='logging level (default: SIGNGATE_LOG_LEVEL or INFO)')
    sub = ap.add_subparsers(dest='cmd', required=True)

    def _add(name: str, help_text: str, func: Any, key_name: bool = True) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        if key_name:
            p.add_argument('--key-name', required=True, help='name the custodial key is stored under')
        p.add_argument('--json', action='store_true', help='print JSON output')
        p.set_defaults(func=func)
        return p

    ap_d = _add('show-descriptor', 'parse a cosigner setup file and print its descriptors', cmd_show_descriptor, key_name=False)
    ap_d.add_argument('--setup-file', required=True, help='BlueWallet multisig setup file')
    ap_d.add_argument('--disasm', action='store_true', help='also print the first receive witness script')

    _add('create-key', 'generate a custodial seed and print its xpub', cmd_create_key)

    ap_w = _add('create-wallet', 'assemble the multisig wallet around the custodial key', cmd_create_wallet)
    ap_w.add_argument('--setup-file', help='BlueWallet multisig setup file')
    ap_w.add_argument('--setup', help='setup text (base64 or plain) instead of a file')

    ap_s = _add('sign', 'sign a PSBT if every policy approves', cmd_sign)
    ap_s.add_argument('--psbt-in', required=True, help='input PSBT file (base64 or hex)')
    ap_s.add_argument('--psbt-out', required=True, help='output PSBT file (base64)')

    _add('halt', 'pull the andon cord: refuse every transaction', cmd_halt)
    _add('reset', 'release the andon cord', cmd_reset)

    ap_l = _add('set-limit', 'set the per-transaction spend limit', cmd_set_limit)
    ap_l.add_argument('--max-spend', required=True, type=int, help='satoshis allowed to leave custody per transaction')

    _add('show-policy', 'print the current policy configuration', cmd_show_policy)

    args = ap.parse_args(argv)
    args.settings = Settings.from_env().override(
        data_dir=args.data_dir, network=args.network, log_level=args.log_level,
    )
    configure_logging(args.settings.log_level)
    args.func(args)


if __name__ == '__main__':
    main()
