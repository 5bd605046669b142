import argparse
import sys
from pathlib import Path

import qrcode

from .config import load_settings
from .errors import ClientAddressExhausted, InvalidFormat, InvalidSubnet, ProvisionError
from .logging_utils import setup_logging
from .models import Family, InterfaceRequest
from .provision import ClientProvisioner, InterfaceProvisioner, check_subnet
from .state import ArtifactStore
from .wireguard import Host


def _ask(prompt, default=None):
    suffix = f" (défaut {default})" if default else ""
    answer = input(f"{prompt}{suffix}: ").strip()
    return answer or default


def _ask_yes(prompt):
    return (input(f"{prompt} (y/N) ").strip() or "N").lower().startswith("y")


def _ask_subnet(prompt, family):
    # boucle tant que la saisie est invalide
    while True:
        subnet = _ask(prompt)
        try:
            check_subnet(subnet or "", family)
            return subnet
        except (InvalidFormat, InvalidSubnet) as exc:
            print(f"[ERREUR] {exc}")


def _store(settings):
    return ArtifactStore(settings.config_dir, settings.client_dir)


def report_error(exc):
    print(f"[ERREUR] {exc}")
    if isinstance(exc, ClientAddressExhausted) and exc.retryable:
        print("[!] Relancer la commande peut suffire.")


def render_qr(conf, png_path):
    qr = qrcode.QRCode()
    qr.add_data(conf)
    qr.make(fit=True)
    qr.print_ascii()

    img = qrcode.make(conf)
    img.save(str(png_path))
    return png_path


# ---------------------------------------------------
# Commande : create-interface
# ---------------------------------------------------

def cmd_create_interface(args, settings):
    print("[*] Création d'une nouvelle interface WireGuard...")
    store = _store(settings)

    ipv6 = args.ipv6 if args.ipv6 is not None else _ask_yes("Activer IPv6 ?")

    if args.subnet4:
        check_subnet(args.subnet4, Family.V4)
        subnet4 = args.subnet4
    else:
        subnet4 = _ask_subnet("Sous-réseau IPv4 (ex 10.10.0.0/24)", Family.V4)

    subnet6 = None
    if ipv6:
        if args.subnet6:
            check_subnet(args.subnet6, Family.V6)
            subnet6 = args.subnet6
        else:
            subnet6 = _ask_subnet("Sous-réseau IPv6 (ex fd00:1234::/64)", Family.V6)

    name = args.name or _ask("Nom de l'interface", store.default_interface_name())

    provisioner = InterfaceProvisioner(settings, store=store)
    iface = provisioner.provision(InterfaceRequest(name=name, subnet4=subnet4, subnet6=subnet6))

    r = iface.record
    print(f"[+] Interface {r.name} créée : {iface.path}")
    print(f"[+] IPv4 publique : {r.public_ip4} | sous-réseau : {r.subnet4}")
    if r.ipv6:
        print(f"[+] IPv6 publique : {r.public_ip6} | sous-réseau : {r.subnet6}")
    print(f"[+] Port : {r.listen_port}")
    return 0


# ---------------------------------------------------
# Commande : add-client
# ---------------------------------------------------

def cmd_add_client(args, settings):
    print("[*] Ajout d'un nouveau client...")
    store = _store(settings)

    interface = args.interface
    if not interface:
        latest = store.latest_interface()
        if latest is None:
            print("[ERREUR] Aucune interface disponible.")
            return 1
        interface = _ask("Interface", latest)

    name = args.name
    if not name and args.interactive:
        name = _ask("Nom du client", store.default_client_name(interface))

    client = ClientProvisioner(settings, store=store).provision(interface, name)

    print(f"[+] Client {client.name} ajouté : {client.path}")
    print(f"[+] Adresses : {', '.join(client.allowed_ips)}")
    if not args.no_qr:
        conf = Path(client.path).read_text(encoding="utf-8")
        png = render_qr(conf, Path(f"{client.path}.png"))
        print(f"[OK] QR code généré : {png}")
    return 0


# ---------------------------------------------------
# Commande : list
# ---------------------------------------------------

def cmd_list(args, settings):
    store = _store(settings)
    names = store.list_interfaces()
    if not names:
        print("Aucune interface.")
        return 0

    for name in names:
        try:
            r = store.load(name)
        except ProvisionError as exc:
            print(f"- {name} : illisible ({exc})")
            continue
        print(f"=== {name} ===")
        print(f"Port      : {r.listen_port}")
        print(f"IPv4      : {r.public_ip4} -> {r.subnet4}")
        if r.ipv6:
            print(f"IPv6      : {r.public_ip6} -> {r.subnet6}")
        print(f"Peers     : {r.peer_count}")
        clients = store.list_clients(name)
        if clients:
            print(f"Clients   : {', '.join(clients)}")
    return 0


# ---------------------------------------------------
# Commande : save-rules
# ---------------------------------------------------

def cmd_save_rules(args, settings):
    for path in Host().save_rules(settings.rules_dir):
        print(f"[OK] Règles sauvegardées : {path}")
    return 0


# ---------------------------------------------------
# Commande : menu (boucle interactive)
# ---------------------------------------------------

MENU = [
    ("Créer une interface", "create"),
    ("Ajouter un client", "client"),
    ("Lister les interfaces", "list"),
    ("Quitter", "quit"),
]


def cmd_menu(args, settings):
    defaults = dict(name=None, interface=None, subnet4=None, subnet6=None, ipv6=None, no_qr=False, interactive=True)
    while True:
        for i, (label, _) in enumerate(MENU, 1):
            print(f"{i}) {label}")
        try:
            choice = input("Choisir une opération : ").strip()
        except EOFError:
            # fin de l'entrée standard : même sortie que "Quitter"
            print()
            choice = str(len(MENU))
        if not choice.isdigit() or not 1 <= int(choice) <= len(MENU):
            print("Option invalide")
            continue

        action = MENU[int(choice) - 1][1]
        if action == "quit":
            cmd_save_rules(args, settings)
            print("Configuration sauvegardée, au revoir !")
            return 0

        sub_args = argparse.Namespace(**defaults)
        handler = {"create": cmd_create_interface, "client": cmd_add_client, "list": cmd_list}[action]
        try:
            handler(sub_args, settings)
        except ProvisionError as exc:
            report_error(exc)
        except EOFError:
            print()
            print("[ERREUR] Saisie interrompue.")


# ---------------------------------------------------
# CLl / Parser
# ---------------------------------------------------

def build_parser():
    parser = argparse.ArgumentParser(prog="wg-provisioner")
    parser.add_argument("--config-dir", type=Path, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd")

    # create-interface
    p_create = sub.add_parser("create-interface")
    p_create.add_argument("--name")
    p_create.add_argument("--subnet4")
    p_create.add_argument("--subnet6")
    p_create.add_argument("--ipv6", dest="ipv6", action="store_true", default=None)
    p_create.add_argument("--no-ipv6", dest="ipv6", action="store_false")
    p_create.set_defaults(func=cmd_create_interface)

    # add-client
    p_add = sub.add_parser("add-client")
    p_add.add_argument("--interface")
    p_add.add_argument("--name")
    p_add.add_argument("--no-qr", action="store_true")
    p_add.set_defaults(func=cmd_add_client, interactive=False)

    # list
    p_list = sub.add_parser("list")
    p_list.set_defaults(func=cmd_list)

    # save-rules
    p_save = sub.add_parser("save-rules")
    p_save.set_defaults(func=cmd_save_rules)

    # menu
    p_menu = sub.add_parser("menu")
    p_menu.set_defaults(func=cmd_menu)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return 0

    settings = load_settings(config_dir=args.config_dir)
    setup_logging(settings.log_dir, verbose=args.verbose)

    try:
        return args.func(args, settings)
    except ProvisionError as exc:
        report_error(exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
