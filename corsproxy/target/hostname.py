import ipaddress
import re

# ISO 3166 country-code top-level domains delegated by IANA.
COUNTRY_CODE_TLDS = frozenset(
    """
    ac ad ae af ag ai al am ao aq ar as at au aw ax az ba bb bd be bf bg bh bi
    bj bm bn bo br bs bt bv bw by bz ca cc cd cf cg ch ci ck cl cm cn co cr cu
    cv cw cx cy cz de dj dk dm do dz ec ee eg er es et eu fi fj fk fm fo fr ga
    gb gd ge gf gg gh gi gl gm gn gp gq gr gs gt gu gw gy hk hm hn hr ht hu id
    ie il im in io iq ir is it je jm jo jp ke kg kh ki km kn kp kr kw ky kz la
    lb lc li lk lr ls lt lu lv ly ma mc md me mg mh mk ml mm mn mo mp mq mr ms
    mt mu mv mw mx my mz na nc ne nf ng ni nl no np nr nu nz om pa pe pf pg ph
    pk pl pm pn pr ps pt pw py qa re ro rs ru rw sa sb sc sd se sg sh si sj sk
    sl sm sn so sr ss st su sv sx sy sz tc td tf tg th tj tk tl tm tn to tr tt
    tv tw tz ua ug uk um us uy uz va vc ve vg vi vn vu wf ws ye yt za zm zw
    """.split()
)

GENERIC_TLDS = frozenset(
    """
    com net org edu gov mil int arpa info biz name pro aero asia cat coop jobs
    mobi museum post tel travel xxx
    academy agency app art audio auto bank bar beer best bike bio blog blue
    boutique build business buzz cafe camera care careers cash center chat
    cheap church city claims cloud club codes coffee college community company
    computer consulting cool credit dance dating deals design dev diamonds
    digital direct directory domains earth eco education email energy
    engineering enterprises equipment estate events exchange expert express
    fail farm fashion film finance fish fitness flights florist foundation fund
    fun furniture futbol gallery game games garden gift gifts glass global gmbh
    gold golf graphics green gripe group guide guru health help holdings
    holiday horse host hosting house how inc industries institute insure
    international investments kitchen land lat law lawyer legal life lighting
    limited limo link live llc loan lol love ltd luxury management market
    marketing media men menu moda moe money mov network news ninja one online
    page partners parts photo photography photos pics pink pizza place plus
    press productions properties pub quest recipes red rentals repair report
    rest restaurant review reviews rich rocks run sale salon school schule
    science services shoes shop shopping show singles site social software
    solar solutions space store studio style sucks supply support surf
    systems tax team tech technology tips today tools top tours town toys
    trade training tube university uno vacations ventures vet viajes video
    villas vip vision voyage watch website wiki win wine work works world wtf
    xyz yoga zone
    amazon android apple google microsoft youtube
    """.split()
)

_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$", re.IGNORECASE)
_IDN_TLD = re.compile(r"^xn--[a-z0-9-]{1,59}$", re.IGNORECASE)


def has_known_tld(hostname: str) -> bool:
    """Whether `hostname` looks like a public DNS name (a.k.a. has a real TLD)."""
    labels = hostname.rstrip(".").lower().split(".")
    if len(labels) < 2 or not all(_LABEL.match(label) for label in labels):
        return False
    tld = labels[-1]
    return tld in COUNTRY_CODE_TLDS or tld in GENERIC_TLDS or bool(_IDN_TLD.match(tld))


def is_ip_literal(hostname: str, version: int) -> bool:
    try:
        return ipaddress.ip_address(hostname).version == version
    except ValueError:
        return False


def is_valid_hostname(hostname: str) -> bool:
    """
    Check whether the hostname of a requested resource is worth proxying.

    This is a heuristic to avoid a network round trip for requests such as
    /favicon.ico or /robots.txt, not a security boundary.
    """
    if not hostname:
        return False
    return (
        has_known_tld(hostname)
        or is_ip_literal(hostname, 4)
        or is_ip_literal(hostname, 6)
    )
